"""Catalog data model shared by the index backends, the blob store and the API.

Entities:
  Movie         - user supplied title / description / tags
  FileInfo      - extension + mime type of a stored blob (media or preview)
  CatalogEntry  - a movie plus its derived file metadata and creation date
  SearchQuery   - sort / filter / pagination parameters for SearchMovies

Errors follow a small taxonomy (InvalidArgument, NotFound, Internal) which the
HTTP layer maps onto status codes.
"""
from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

CatalogId = str


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class CatalogError(Exception):
    """Base class of every error raised by the catalog core."""


class InvalidArgument(CatalogError):
    pass


class NotFound(CatalogError):
    pass


class Internal(CatalogError):
    pass


class NotReady(CatalogError):
    """The entry exists but the requested blob has not been stored yet."""


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------

class Movie(BaseModel):
    title: str
    description: str = ""
    tags: List[str] = Field(default_factory=list)


class FileInfo(BaseModel):
    # extension without the leading dot, e.g. "mp4"
    extension: str
    mime_type: str


class CatalogEntry(BaseModel):
    movie: Movie
    media_info: Optional[FileInfo] = None
    preview_info: Optional[FileInfo] = None
    created_at: datetime


class SortField(str, Enum):
    TITLE = "title"
    CREATED_AT = "date"


class SortOrder(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


class SearchQuery(BaseModel):
    sort_field: SortField = SortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESCENDING
    title_pattern: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    offset: Optional[int] = Field(default=None, ge=0)
    limit: Optional[int] = Field(default=None, ge=1)


PREVIEW_INFO = FileInfo(extension="png", mime_type="image/png")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def generate_id() -> CatalogId:
    """Return a new random 128-bit catalog id rendered as text."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Lowercase, deduplicate and sort tags.

    Sorted storage lets backends answer membership checks with ordered
    lookups; "Sci-Fi" and "sci-fi" collapse into one stored tag.
    """
    return sorted({t.lower() for t in tags})


def validate_title(title: str) -> None:
    if not title:
        raise InvalidArgument("Movie title must not be empty")


@lru_cache(maxsize=256)
def _compile_wildcard(pattern: str) -> re.Pattern:
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.DOTALL)


def wildcard_match(pattern: str, text: str) -> bool:
    """Glob-style match over the whole text: `*` any run, `?` exactly one char.

    No other character is special, so a pattern without wildcards is an
    exact comparison.
    """
    return _compile_wildcard(pattern).fullmatch(text) is not None
