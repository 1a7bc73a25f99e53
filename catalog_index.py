"""Catalog index contract and the in-memory reference backend.

Every backend must return identical results for the same sequence of
operations; tests/test_catalog_index.py runs one conformance suite against
all of them. The search algorithm is:

  1. lowercase/deduplicate the query tags
  2. order all entries by (sort field, id) ascending, reversed for descending
  3. keep entries whose title matches the wildcard pattern and whose tags
     contain every query tag
  4. skip `offset` matches, return at most `limit` ids
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from itertools import islice
from typing import Dict, Iterable, List, Optional, Tuple

from catalog import (
    CatalogEntry,
    CatalogId,
    FileInfo,
    Internal,
    Movie,
    NotFound,
    SearchQuery,
    SortField,
    SortOrder,
    generate_id,
    normalize_tags,
    utc_now,
    validate_title,
    wildcard_match,
)

logger = logging.getLogger(__name__)


class CatalogIndex(ABC):
    """Storage-independent contract of the catalog index."""

    @abstractmethod
    def add_movie(self, movie: Movie) -> CatalogId:
        """Store a new entry; fails InvalidArgument on an empty title."""

    @abstractmethod
    def get_movie(self, id: CatalogId) -> CatalogEntry:
        ...

    @abstractmethod
    def remove_movie(self, id: CatalogId) -> None:
        ...

    @abstractmethod
    def change_title(self, id: CatalogId, title: str) -> None:
        ...

    @abstractmethod
    def change_description(self, id: CatalogId, description: str) -> None:
        ...

    @abstractmethod
    def change_tags(self, id: CatalogId, tags: List[str]) -> None:
        ...

    @abstractmethod
    def update_media_info(self, id: CatalogId, info: FileInfo) -> None:
        ...

    @abstractmethod
    def update_preview_info(self, id: CatalogId, info: FileInfo) -> None:
        ...

    @abstractmethod
    def search_movies(self, query: SearchQuery) -> List[CatalogId]:
        ...

    @abstractmethod
    def tag_counts(self) -> List[Tuple[str, int]]:
        """Return (tag, count) pairs ordered by count desc, then tag asc."""

    def close(self) -> None:  # noqa: B027
        pass


def not_found(id: CatalogId) -> NotFound:
    logger.error("Movie with id %s not found", id)
    return NotFound(f"Movie with id {id} not found")


def select_page(ids: Iterable[CatalogId], offset: Optional[int], limit: Optional[int]) -> List[CatalogId]:
    start = offset or 0
    stop = None if limit is None else start + limit
    return list(islice(ids, start, stop))


def sort_tag_counts(counts: Dict[str, int]) -> List[Tuple[str, int]]:
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class MemoryCatalogIndex(CatalogIndex):
    """Dictionary backed index; contents are lost on restart."""

    def __init__(self) -> None:
        self._entries: Dict[CatalogId, CatalogEntry] = {}

    def _entry(self, id: CatalogId) -> CatalogEntry:
        entry = self._entries.get(id)
        if entry is None:
            raise not_found(id)
        return entry

    def add_movie(self, movie: Movie) -> CatalogId:
        validate_title(movie.title)
        id = generate_id()
        logger.info("Adding movie %s with id %s", movie.title, id)
        # uuid4 collisions are treated as impossible, not as bad input
        assert id not in self._entries, f"Movie with id {id} already exists"
        stored = Movie(title=movie.title, description=movie.description, tags=normalize_tags(movie.tags))
        self._entries[id] = CatalogEntry(movie=stored, created_at=utc_now())
        return id

    def get_movie(self, id: CatalogId) -> CatalogEntry:
        logger.debug("Getting movie with id %s", id)
        return self._entry(id).model_copy(deep=True)

    def remove_movie(self, id: CatalogId) -> None:
        logger.info("Removing movie with id %s", id)
        if self._entries.pop(id, None) is None:
            raise not_found(id)

    def change_title(self, id: CatalogId, title: str) -> None:
        validate_title(title)
        self._entry(id).movie.title = title

    def change_description(self, id: CatalogId, description: str) -> None:
        self._entry(id).movie.description = description

    def change_tags(self, id: CatalogId, tags: List[str]) -> None:
        self._entry(id).movie.tags = normalize_tags(tags)

    def update_media_info(self, id: CatalogId, info: FileInfo) -> None:
        logger.info("Updating movie file info for movie with id %s", id)
        self._entry(id).media_info = info.model_copy()

    def update_preview_info(self, id: CatalogId, info: FileInfo) -> None:
        logger.info("Updating preview info for movie with id %s", id)
        self._entry(id).preview_info = info.model_copy()

    def _sorted_ids(self, field: SortField, order: SortOrder) -> List[CatalogId]:
        if field is SortField.TITLE:
            keyed = [(e.movie.title, id) for id, e in self._entries.items()]
        else:
            keyed = [(e.created_at, id) for id, e in self._entries.items()]
        keyed.sort()
        ids = [id for _, id in keyed]
        if order is SortOrder.DESCENDING:
            ids.reverse()
        return ids

    def search_movies(self, query: SearchQuery) -> List[CatalogId]:
        logger.info("Searching movies with query %s", query)
        tags = normalize_tags(query.tags)

        def matches() -> Iterable[CatalogId]:
            for id in self._sorted_ids(query.sort_field, query.sort_order):
                entry = self._entries.get(id)
                if entry is None:
                    logger.error("Movie with id %s not found", id)
                    raise Internal(f"Movie with id {id} not found")
                if query.title_pattern is not None and not wildcard_match(query.title_pattern, entry.movie.title):
                    continue
                if tags and not set(tags).issubset(entry.movie.tags):
                    continue
                yield id

        return select_page(matches(), query.offset, query.limit)

    def tag_counts(self) -> List[Tuple[str, int]]:
        counts: Counter[str] = Counter()
        for entry in self._entries.values():
            counts.update(entry.movie.tags)
        return sort_tag_counts(counts)
