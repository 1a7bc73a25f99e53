"""Binary storage for media files and preview images.

Each catalog id owns one namespace (a directory for the file backend):

    <root>/<id>/movie.<ext>
    <root>/<id>/preview.<ext>

so remove_all() deletes everything belonging to an id in one call.
"""
from __future__ import annotations

import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

from catalog import CatalogId, Internal, NotFound

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class MediaData:
    extension: str

    @property
    def filename(self) -> str:
        return f"movie.{self.extension}"


@dataclass(frozen=True)
class PreviewData:
    extension: str

    @property
    def filename(self) -> str:
        return f"preview.{self.extension}"


BlobKind = Union[MediaData, PreviewData]


class BlobReader:
    """Readable byte source that knows its total size."""

    def __init__(self, fh: BinaryIO, size: int):
        self._fh = fh
        self.size = size

    def read(self, n: int = -1) -> bytes:
        return self._fh.read(n)

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        try:
            while True:
                chunk = self._fh.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        self._fh.close()

    def __enter__(self) -> "BlobReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class BlobStore(ABC):
    @abstractmethod
    def allocate(self, id: CatalogId) -> None:
        """Reserve the namespace for a freshly added entry."""

    @abstractmethod
    def open_writer(self, id: CatalogId, kind: BlobKind) -> BinaryIO:
        ...

    @abstractmethod
    def open_reader(self, id: CatalogId, kind: BlobKind) -> BlobReader:
        ...

    @abstractmethod
    def remove_all(self, id: CatalogId) -> None:
        ...

    def local_path(self, id: CatalogId, kind: BlobKind) -> Optional[Path]:
        """Filesystem path of a blob, or None when the backend has no local files."""
        return None


class FileBlobStore(BlobStore):
    def __init__(self, root_dir: Path):
        self.root_dir = Path(root_dir)
        try:
            self.root_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise Internal(f"Failed to create root directory '{self.root_dir}': {e}") from e

    def _id_dir(self, id: CatalogId) -> Path:
        # ids are server generated uuids; reject anything that could escape root
        if not id or "/" in id or "\\" in id or id in (".", ".."):
            raise NotFound(f"Invalid movie id {id!r}")
        return self.root_dir / id

    def _ensure_dir(self, id: CatalogId) -> Path:
        d = self._id_dir(id)
        try:
            d.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise Internal(f"Failed to create directory '{d}': {e}") from e
        return d

    def _file_path(self, id: CatalogId, kind: BlobKind, create_dir: bool) -> Path:
        d = self._ensure_dir(id) if create_dir else self._id_dir(id)
        return d / kind.filename

    def allocate(self, id: CatalogId) -> None:
        self._ensure_dir(id)

    def open_writer(self, id: CatalogId, kind: BlobKind) -> BinaryIO:
        path = self._file_path(id, kind, create_dir=True)
        try:
            return open(path, "wb")
        except OSError as e:
            raise Internal(f"Failed to create file '{path}': {e}") from e

    def open_reader(self, id: CatalogId, kind: BlobKind) -> BlobReader:
        path = self._file_path(id, kind, create_dir=False)
        if not path.is_file():
            raise NotFound(f"No {kind.filename} stored for movie {id}")
        try:
            fh = open(path, "rb")
            return BlobReader(fh, path.stat().st_size)
        except OSError as e:
            raise Internal(f"Failed to open file '{path}': {e}") from e

    def remove_all(self, id: CatalogId) -> None:
        d = self._id_dir(id)
        if not d.exists():
            return
        try:
            shutil.rmtree(d)
        except OSError as e:
            raise Internal(f"Failed to remove movie data directory '{d}': {e}") from e
        logger.info("Removed movie data directory '%s'", id)

    def local_path(self, id: CatalogId, kind: BlobKind) -> Optional[Path]:
        return self._file_path(id, kind, create_dir=False)
