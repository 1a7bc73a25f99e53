"""SQLite backed catalog index.

Schema:
  movies(id, title, description, date_added)
  tags(id, tag)
  file_infos(id, mime_type, extension)
  preview_infos(id, mime_type, extension)

`date_added` is fixed-width UTC ISO-8601 text, so ORDER BY on the column is
chronological. Title patterns go through the same wildcard matcher as the
in-memory backend (registered as the SQL function `title_match`), which keeps
the two backends' search results identical.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from catalog import (
    CatalogEntry,
    CatalogId,
    FileInfo,
    Internal,
    Movie,
    SearchQuery,
    SortField,
    SortOrder,
    generate_id,
    normalize_tags,
    utc_now,
    validate_title,
    wildcard_match,
)
from catalog_index import CatalogIndex, not_found

logger = logging.getLogger(__name__)

DB_FILENAME = "movies.db"

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS movies (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT,
        date_added TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
        id TEXT NOT NULL,
        tag TEXT NOT NULL,
        PRIMARY KEY (id, tag)
    )
    """,
    "CREATE INDEX IF NOT EXISTS tags_tag ON tags(tag)",
    """
    CREATE TABLE IF NOT EXISTS file_infos (
        id TEXT PRIMARY KEY,
        mime_type TEXT NOT NULL,
        extension TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS preview_infos (
        id TEXT PRIMARY KEY,
        mime_type TEXT NOT NULL,
        extension TEXT NOT NULL
    )
    """,
)

_ORDER_COLUMNS = {SortField.TITLE: "m.title", SortField.CREATED_AT: "m.date_added"}


def format_date(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        logger.error("Failed to parse date: %s", e)
        raise Internal(f"Failed to parse date: {e}") from e


class SqliteCatalogIndex(CatalogIndex):
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        logger.debug("SQLite database path: %s", self.db_path)
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.create_function("title_match", 2, _title_match, deterministic=True)
            with self._conn:
                for stmt in SCHEMA:
                    self._conn.execute(stmt)
        except sqlite3.Error as e:
            logger.error("Failed to open the SQLite database: %s", e)
            raise Internal(f"Failed to open SQLite DB {self.db_path}: {e}") from e

    @classmethod
    def open(cls, root_dir: Path) -> "SqliteCatalogIndex":
        """Open (or create) movies.db under root_dir."""
        try:
            root_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Failed to create the root directory: %s", e)
            raise Internal(f"Failed to create root directory {root_dir}: {e}") from e
        path = root_dir / DB_FILENAME
        if path.exists():
            logger.info("Found existing %s", path)
        return cls(path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except sqlite3.Error as e:
                logger.error("SQLite error: %s", e)
                raise Internal(f"SQLite Error: {e}") from e

    @staticmethod
    def _require(conn: sqlite3.Connection, id: CatalogId) -> None:
        if conn.execute("SELECT 1 FROM movies WHERE id = ?", (id,)).fetchone() is None:
            raise not_found(id)

    def add_movie(self, movie: Movie) -> CatalogId:
        validate_title(movie.title)
        id = generate_id()
        logger.info("Adding movie %s with id %s", movie.title, id)
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO movies (id, title, description, date_added) VALUES (?, ?, ?, ?)",
                (id, movie.title, movie.description, format_date(utc_now())),
            )
            conn.executemany(
                "INSERT INTO tags (id, tag) VALUES (?, ?)",
                [(id, tag) for tag in normalize_tags(movie.tags)],
            )
        return id

    def get_movie(self, id: CatalogId) -> CatalogEntry:
        logger.debug("Getting movie with id %s", id)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT title, description, date_added FROM movies WHERE id = ?", (id,)
            ).fetchone()
            if row is None:
                raise not_found(id)
            tags = [r[0] for r in conn.execute("SELECT tag FROM tags WHERE id = ? ORDER BY tag", (id,))]
            media = conn.execute("SELECT extension, mime_type FROM file_infos WHERE id = ?", (id,)).fetchone()
            preview = conn.execute("SELECT extension, mime_type FROM preview_infos WHERE id = ?", (id,)).fetchone()
        title, description, date_added = row
        return CatalogEntry(
            movie=Movie(title=title, description=description or "", tags=tags),
            media_info=FileInfo(extension=media[0], mime_type=media[1]) if media else None,
            preview_info=FileInfo(extension=preview[0], mime_type=preview[1]) if preview else None,
            created_at=parse_date(date_added),
        )

    def remove_movie(self, id: CatalogId) -> None:
        logger.info("Removing movie with id %s", id)
        with self._transaction() as conn:
            if conn.execute("DELETE FROM movies WHERE id = ?", (id,)).rowcount == 0:
                raise not_found(id)
            for table in ("tags", "file_infos", "preview_infos"):
                conn.execute(f"DELETE FROM {table} WHERE id = ?", (id,))

    def _update_movie(self, id: CatalogId, column: str, value: str) -> None:
        with self._transaction() as conn:
            if conn.execute(f"UPDATE movies SET {column} = ? WHERE id = ?", (value, id)).rowcount == 0:
                raise not_found(id)

    def change_title(self, id: CatalogId, title: str) -> None:
        validate_title(title)
        self._update_movie(id, "title", title)

    def change_description(self, id: CatalogId, description: str) -> None:
        self._update_movie(id, "description", description)

    def change_tags(self, id: CatalogId, tags: List[str]) -> None:
        with self._transaction() as conn:
            self._require(conn, id)
            conn.execute("DELETE FROM tags WHERE id = ?", (id,))
            conn.executemany("INSERT INTO tags (id, tag) VALUES (?, ?)", [(id, t) for t in normalize_tags(tags)])

    def _replace_info(self, table: str, id: CatalogId, info: FileInfo) -> None:
        with self._transaction() as conn:
            self._require(conn, id)
            conn.execute(
                f"INSERT OR REPLACE INTO {table} (id, mime_type, extension) VALUES (?, ?, ?)",
                (id, info.mime_type, info.extension),
            )

    def update_media_info(self, id: CatalogId, info: FileInfo) -> None:
        logger.info("Updating movie file info for movie with id %s", id)
        self._replace_info("file_infos", id, info)

    def update_preview_info(self, id: CatalogId, info: FileInfo) -> None:
        logger.info("Updating preview info for movie with id %s", id)
        self._replace_info("preview_infos", id, info)

    def search_movies(self, query: SearchQuery) -> List[CatalogId]:
        logger.info("Searching movies with query %s", query)
        sql, params = build_search_sql(query)
        logger.debug("Search SQL: %s %s", sql, params)
        with self._transaction() as conn:
            return [row[0] for row in conn.execute(sql, params)]

    def tag_counts(self) -> List[Tuple[str, int]]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT tag, COUNT(*) FROM tags GROUP BY tag ORDER BY COUNT(*) DESC, tag ASC"
            ).fetchall()
        return [(tag, count) for tag, count in rows]


def _title_match(pattern: Optional[str], title: Optional[str]) -> int:
    if pattern is None or title is None:
        return 0
    return int(wildcard_match(pattern, title))


def build_search_sql(query: SearchQuery) -> Tuple[str, list]:
    """Translate a SearchQuery into one parameterized SELECT over movie ids."""
    where: List[str] = []
    params: list = []
    if query.title_pattern is not None:
        where.append("title_match(?, m.title)")
        params.append(query.title_pattern)
    tags = normalize_tags(query.tags)
    if tags:
        marks = ",".join("?" for _ in tags)
        where.append(
            f"m.id IN (SELECT id FROM tags WHERE tag IN ({marks}) GROUP BY id HAVING COUNT(DISTINCT tag) = ?)"
        )
        params.extend(tags)
        params.append(len(tags))
    sql = "SELECT m.id FROM movies m"
    if where:
        sql += " WHERE " + " AND ".join(where)
    direction = "ASC" if query.sort_order is SortOrder.ASCENDING else "DESC"
    sql += f" ORDER BY {_ORDER_COLUMNS[query.sort_field]} {direction}, m.id {direction}"
    if query.limit is not None or query.offset:
        sql += " LIMIT ? OFFSET ?"
        params.extend([query.limit if query.limit is not None else -1, query.offset or 0])
    return sql, params
