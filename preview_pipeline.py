"""Background preview generation.

Keeps "every entry with media_info eventually has preview_info":

  - reconcile() scans the index once at startup and queues a job for each
    entry that has media but no preview (recovers from crashes mid-job)
  - the upload path queues a job right after the media info is recorded
  - a single worker thread consumes jobs strictly FIFO

For each job: resolve the media file path, probe its duration, grab the
frame at duration / 2 as PNG, store it as the preview blob, record
preview_info. A failing step logs and drops the job; nothing is retried or
rolled back, and the loop moves on to the next job.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from queue import Queue
from typing import Any, List, Union

from blob_store import BlobStore, MediaData, PreviewData
from catalog import PREVIEW_INFO, CatalogError, CatalogId, SearchQuery
from catalog_index import CatalogIndex
from logs import log_event
from media_probe import MediaProbe
from rwlock import Shared

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreviewJob:
    catalog_id: CatalogId
    media_extension: str


class _Close:
    pass


_CLOSE = _Close()


class PreviewPipeline(threading.Thread):
    def __init__(self, index: Shared[CatalogIndex], store: Shared[BlobStore], probe: MediaProbe):
        super().__init__(name="preview-pipeline", daemon=True)
        self.index = index
        self.store = store
        self.probe = probe
        self._queue: Queue[Union[PreviewJob, _Close]] = Queue()
        self._closed = threading.Event()
        # closed-check and put happen together so nothing lands behind _CLOSE
        self._put_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Job source
    # ------------------------------------------------------------------

    def enqueue(self, job: PreviewJob) -> bool:
        with self._put_lock:
            if self._closed.is_set():
                logger.error("Preview queue closed; dropping request for movie '%s'", job.catalog_id)
                return False
            self._queue.put(job)
        log_event("preview_queued", id=job.catalog_id, ext=job.media_extension)
        return True

    def close(self) -> None:
        """Close the job source; the worker exits after the jobs already queued."""
        with self._put_lock:
            if not self._closed.is_set():
                self._closed.set()
                self._queue.put(_CLOSE)

    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self) -> None:
        """Block until every queued job has been handled."""
        self._queue.join()

    def reconcile(self) -> List[PreviewJob]:
        """Queue a job for every entry with media but without a preview."""
        jobs: List[PreviewJob] = []
        with self.index.read() as index:
            for id in index.search_movies(SearchQuery()):
                entry = index.get_movie(id)
                if entry.media_info is not None and entry.preview_info is None:
                    jobs.append(PreviewJob(id, entry.media_info.extension))
        for job in jobs:
            self.enqueue(job)
        logger.info("Reconciliation queued %d preview job(s)", len(jobs))
        log_event("reconcile", queued=len(jobs))
        return jobs

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def run(self) -> None:  # noqa: D401
        logger.info("Preview pipeline started")
        while True:
            job = self._queue.get()
            try:
                if isinstance(job, _Close):
                    break
                self.process(job)
            except Exception:  # noqa: BLE001
                logger.exception("Unexpected failure while generating preview for %s", job)
            finally:
                self._queue.task_done()
        logger.info("Preview pipeline stopped")

    def _drop(self, job: PreviewJob, step: str, error: Any) -> bool:
        logger.error("Preview for movie '%s' failed at %s: %s", job.catalog_id, step, error)
        log_event("preview_dropped", id=job.catalog_id, step=step, error=str(error))
        return False

    def process(self, job: PreviewJob) -> bool:
        """Run one job through all steps; returns True when preview_info was written."""
        id = job.catalog_id
        logger.info("Generating preview for movie '%s'", id)

        try:
            with self.store.read() as store:
                path = store.local_path(id, MediaData(job.media_extension))
        except (CatalogError, OSError) as e:
            return self._drop(job, "resolve", e)
        if path is None:
            return self._drop(job, "resolve", "file paths are not supported by backend")
        logger.debug("Movie file path: %s", path)

        try:
            duration = self.probe.probe(path)
        except (CatalogError, OSError) as e:
            return self._drop(job, "probe", e)

        # fixed midpoint capture
        timestamp = duration / 2.0
        try:
            image = self.probe.extract_frame(path, timestamp)
        except (CatalogError, OSError) as e:
            return self._drop(job, "extract", e)

        try:
            with self.store.read() as store:
                with store.open_writer(id, PreviewData(PREVIEW_INFO.extension)) as writer:
                    writer.write(image)
        except (CatalogError, OSError) as e:
            return self._drop(job, "write", e)

        try:
            with self.index.write() as index:
                index.update_preview_info(id, PREVIEW_INFO)
        except (CatalogError, OSError) as e:
            return self._drop(job, "index", e)

        logger.info("Preview for movie '%s' created at %.3fs", id, timestamp)
        log_event("preview_done", id=id, timestamp=timestamp, size=len(image))
        return True
