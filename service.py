"""Request-facing operations over the shared index, blob store and preview
pipeline. The HTTP layer (api.py) and the CLI only talk to CatalogService.
"""
from __future__ import annotations

import logging
import shutil
from pathlib import PurePath
from typing import BinaryIO, Dict, List, Optional, Tuple

from blob_store import BlobReader, BlobStore, FileBlobStore, MediaData, PreviewData
from catalog import (
    CatalogEntry,
    CatalogError,
    CatalogId,
    FileInfo,
    InvalidArgument,
    Movie,
    NotReady,
    SearchQuery,
)
from catalog_index import CatalogIndex, MemoryCatalogIndex
from media_probe import FFmpegProbe, MediaProbe
from preview_pipeline import PreviewJob, PreviewPipeline
from rwlock import Shared

logger = logging.getLogger(__name__)


class UnsupportedMediaType(InvalidArgument):
    pass


def file_extension(filename: Optional[str]) -> str:
    """Extension of an uploaded file name without the dot ("clip.MP4" -> "MP4")."""
    if not filename:
        raise InvalidArgument("Invalid filename")
    suffix = PurePath(filename).suffix
    if len(suffix) < 2:
        raise InvalidArgument("Invalid extension")
    return suffix[1:]


class CatalogService:
    def __init__(self, index: CatalogIndex, store: BlobStore, probe: MediaProbe):
        self.index: Shared[CatalogIndex] = Shared(index)
        self.store: Shared[BlobStore] = Shared(store)
        self.probe = probe
        self.pipeline: Optional[PreviewPipeline] = None

    @classmethod
    def from_options(cls, options) -> "CatalogService":
        """Build the service from mediadb.Options (root dir, backend, ffmpeg dir)."""
        root = options.root_dir
        if options.index_backend == "memory":
            index: CatalogIndex = MemoryCatalogIndex()
        else:
            from sqlite_index import SqliteCatalogIndex

            index = SqliteCatalogIndex.open(root)
        store = FileBlobStore(root / "data")
        probe = FFmpegProbe(options.ffmpeg_dir)
        try:
            probe.check()
        except CatalogError as e:
            logger.warning("ffmpeg check failed, previews will not be generated: %s", e)
        return cls(index, store, probe)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Reconcile pending previews, then start the worker."""
        if self.pipeline is not None:
            return
        self.pipeline = PreviewPipeline(self.index, self.store, self.probe)
        self.pipeline.reconcile()
        self.pipeline.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        pipeline, self.pipeline = self.pipeline, None
        if pipeline is None:
            return
        pipeline.close()
        pipeline.join(timeout)

    def close(self) -> None:
        self.stop()
        with self.index.write() as index:
            index.close()

    def pending_previews(self) -> int:
        pipeline = self.pipeline
        return pipeline.pending() if pipeline else 0

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def add_movie(self, movie: Movie) -> CatalogId:
        with self.index.write() as index:
            id = index.add_movie(movie)
        with self.store.read() as store:
            store.allocate(id)
        return id

    def get_movie(self, id: CatalogId) -> CatalogEntry:
        with self.index.read() as index:
            return index.get_movie(id)

    def update_movie(
        self,
        id: CatalogId,
        title: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> CatalogEntry:
        with self.index.write() as index:
            if title is not None:
                index.change_title(id, title)
            if description is not None:
                index.change_description(id, description)
            if tags is not None:
                index.change_tags(id, tags)
            return index.get_movie(id)

    def remove_movie(self, id: CatalogId) -> None:
        """Drop the index entry, then its blobs (not atomic across the two)."""
        with self.index.write() as index:
            index.remove_movie(id)
        with self.store.read() as store:
            store.remove_all(id)

    def search(self, query: SearchQuery) -> List[Dict[str, str]]:
        with self.index.read() as index:
            ids = index.search_movies(query)
            return [{"id": id, "title": index.get_movie(id).movie.title} for id in ids]

    def tag_counts(self) -> List[Tuple[str, int]]:
        with self.index.read() as index:
            return index.tag_counts()

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def _write_blob(self, id: CatalogId, kind, data: BinaryIO) -> None:
        with self.store.read() as store:
            with store.open_writer(id, kind) as writer:
                shutil.copyfileobj(data, writer)

    def upload_media(self, id: CatalogId, filename: Optional[str], content_type: Optional[str], data: BinaryIO) -> FileInfo:
        if not content_type or not content_type.startswith("video"):
            raise UnsupportedMediaType(f"Invalid content type {content_type!r}")
        ext = file_extension(filename)
        logger.info("Uploading file %s with mime-type %s", filename, content_type)
        self.get_movie(id)
        self._write_blob(id, MediaData(ext), data)
        info = FileInfo(extension=ext, mime_type=content_type)
        with self.index.write() as index:
            index.update_media_info(id, info)
        pipeline = self.pipeline
        if pipeline is not None:
            pipeline.enqueue(PreviewJob(id, ext))
        else:
            logger.warning("Preview pipeline not running; movie '%s' waits for the next reconciliation", id)
        return info

    def upload_preview(self, id: CatalogId, filename: Optional[str], content_type: Optional[str], data: BinaryIO) -> FileInfo:
        if not content_type or not content_type.startswith("image"):
            raise UnsupportedMediaType(f"Invalid content type {content_type!r}")
        ext = file_extension(filename)
        logger.info("Uploading preview %s with mime-type %s", filename, content_type)
        self.get_movie(id)
        self._write_blob(id, PreviewData(ext), data)
        info = FileInfo(extension=ext, mime_type=content_type)
        with self.index.write() as index:
            index.update_preview_info(id, info)
        return info

    def open_media(self, id: CatalogId) -> Tuple[FileInfo, BlobReader]:
        info = self.get_movie(id).media_info
        if info is None:
            raise NotReady(f"Movie {id} is not yet ready")
        with self.store.read() as store:
            return info, store.open_reader(id, MediaData(info.extension))

    def open_preview(self, id: CatalogId) -> Tuple[FileInfo, BlobReader]:
        info = self.get_movie(id).preview_info
        if info is None:
            raise NotReady(f"Movie {id} has no preview yet")
        with self.store.read() as store:
            return info, store.open_reader(id, PreviewData(info.extension))
