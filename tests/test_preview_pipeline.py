import threading

import pytest

from blob_store import FileBlobStore, MediaData, PreviewData
from catalog import FileInfo, Internal, Movie
from catalog_index import MemoryCatalogIndex
from conftest import PNG_BYTES, FakeProbe
from preview_pipeline import PreviewJob, PreviewPipeline
from rwlock import Shared

MP4 = FileInfo(extension="mp4", mime_type="video/mp4")


class NoPathStore(FileBlobStore):
    def local_path(self, id, kind):
        return None


class FailingWriteStore(FileBlobStore):
    """Preview writes fail for the given ids."""

    def __init__(self, root_dir, fail_ids=()):
        super().__init__(root_dir)
        self.fail_ids = set(fail_ids)

    def open_writer(self, id, kind):
        if isinstance(kind, PreviewData) and id in self.fail_ids:
            raise Internal("disk full")
        return super().open_writer(id, kind)


class BrokenPathStore(FileBlobStore):
    """Path lookups raise for the given ids."""

    def __init__(self, root_dir, fail_ids=(), error=OSError("permission denied")):
        super().__init__(root_dir)
        self.fail_ids = set(fail_ids)
        self.error = error

    def local_path(self, id, kind):
        if id in self.fail_ids:
            raise self.error
        return super().local_path(id, kind)


@pytest.fixture
def parts(tmp_path):
    index = MemoryCatalogIndex()
    store = FileBlobStore(tmp_path / "data")
    return index, store


def add_with_media(index, store, title):
    id = index.add_movie(Movie(title=title))
    with store.open_writer(id, MediaData("mp4")) as w:
        w.write(b"fake-video")
    index.update_media_info(id, MP4)
    return id


def make_pipeline(index, store, probe):
    return PreviewPipeline(Shared(index), Shared(store), probe)


def test_process_writes_preview(parts):
    index, store = parts
    probe = FakeProbe(duration=30.0)
    id = add_with_media(index, store, "Heat")

    assert make_pipeline(index, store, probe).process(PreviewJob(id, "mp4")) is True

    entry = index.get_movie(id)
    assert entry.preview_info == FileInfo(extension="png", mime_type="image/png")
    with store.open_reader(id, PreviewData("png")) as r:
        assert r.read() == PNG_BYTES
    assert probe.probed == [store.local_path(id, MediaData("mp4"))]
    assert probe.extracted[0][1] == pytest.approx(15.0)


def test_reconcile_picks_only_entries_missing_previews(parts):
    index, store = parts
    pending = add_with_media(index, store, "pending")
    done = add_with_media(index, store, "done")
    index.update_preview_info(done, FileInfo(extension="jpg", mime_type="image/jpeg"))
    index.add_movie(Movie(title="no media"))

    pipeline = make_pipeline(index, store, FakeProbe())
    jobs = pipeline.reconcile()

    assert jobs == [PreviewJob(pending, "mp4")]
    assert pipeline.pending() == 1


def test_reconcile_then_worker_fills_preview(parts):
    index, store = parts
    id = add_with_media(index, store, "Heat")
    pipeline = make_pipeline(index, store, FakeProbe())
    pipeline.reconcile()
    pipeline.start()
    try:
        pipeline.drain()
    finally:
        pipeline.close()
        pipeline.join(5)
    assert not pipeline.is_alive()
    assert index.get_movie(id).preview_info == FileInfo(extension="png", mime_type="image/png")


def test_failed_probe_does_not_stop_later_jobs(parts):
    index, store = parts
    bad = add_with_media(index, store, "bad")
    good = add_with_media(index, store, "good")
    probe = FakeProbe(fail_probe_for=[bad])
    pipeline = make_pipeline(index, store, probe)
    pipeline.start()
    try:
        assert pipeline.enqueue(PreviewJob(bad, "mp4"))
        assert pipeline.enqueue(PreviewJob(good, "mp4"))
        pipeline.drain()
    finally:
        pipeline.close()
        pipeline.join(5)
    assert index.get_movie(bad).preview_info is None
    assert index.get_movie(good).preview_info is not None
    assert probe.extracted == [(store.local_path(good, MediaData("mp4")), 5.0)]


def test_failed_extract_drops_job(parts):
    index, store = parts
    id = add_with_media(index, store, "Heat")
    pipeline = make_pipeline(index, store, FakeProbe(fail_extract_for=[id]))
    assert pipeline.process(PreviewJob(id, "mp4")) is False
    assert index.get_movie(id).preview_info is None
    assert not store.local_path(id, PreviewData("png")).exists()


def test_backend_without_paths_drops_job(tmp_path):
    index = MemoryCatalogIndex()
    store = NoPathStore(tmp_path)
    id = add_with_media(index, store, "Heat")
    probe = FakeProbe()
    assert make_pipeline(index, store, probe).process(PreviewJob(id, "mp4")) is False
    assert probe.probed == []


def test_index_failure_keeps_written_blob(parts):
    index, store = parts
    id = add_with_media(index, store, "Heat")
    index.remove_movie(id)
    pipeline = make_pipeline(index, store, FakeProbe())
    assert pipeline.process(PreviewJob(id, "mp4")) is False
    assert store.local_path(id, PreviewData("png")).read_bytes() == PNG_BYTES


def test_enqueue_after_close_is_rejected(parts):
    index, store = parts
    pipeline = make_pipeline(index, store, FakeProbe())
    pipeline.close()
    assert pipeline.enqueue(PreviewJob("x", "mp4")) is False


def test_close_lets_queued_jobs_finish(parts):
    index, store = parts
    ids = [add_with_media(index, store, f"m{i}") for i in range(3)]
    pipeline = make_pipeline(index, store, FakeProbe())
    for id in ids:
        pipeline.enqueue(PreviewJob(id, "mp4"))
    pipeline.close()
    pipeline.start()
    pipeline.join(5)
    assert not pipeline.is_alive()
    assert all(index.get_movie(id).preview_info is not None for id in ids)


def run_jobs(pipeline, jobs):
    pipeline.start()
    try:
        for job in jobs:
            assert pipeline.enqueue(job)
        pipeline.drain()
    finally:
        pipeline.close()
        pipeline.join(5)
    assert not pipeline.is_alive()


def test_failed_preview_write_drops_job(tmp_path):
    index = MemoryCatalogIndex()
    store = FailingWriteStore(tmp_path)
    bad = add_with_media(index, store, "bad")
    good = add_with_media(index, store, "good")
    store.fail_ids.add(bad)
    pipeline = make_pipeline(index, store, FakeProbe())

    assert pipeline.process(PreviewJob(bad, "mp4")) is False
    assert index.get_movie(bad).preview_info is None

    run_jobs(pipeline, [PreviewJob(bad, "mp4"), PreviewJob(good, "mp4")])
    assert index.get_movie(bad).preview_info is None
    assert index.get_movie(good).preview_info == FileInfo(extension="png", mime_type="image/png")


@pytest.mark.parametrize("error", [OSError("permission denied"), Internal("store offline")])
def test_path_lookup_error_drops_job(tmp_path, error):
    index = MemoryCatalogIndex()
    store = BrokenPathStore(tmp_path, error=error)
    bad = add_with_media(index, store, "bad")
    good = add_with_media(index, store, "good")
    store.fail_ids.add(bad)
    probe = FakeProbe()
    pipeline = make_pipeline(index, store, probe)

    assert pipeline.process(PreviewJob(bad, "mp4")) is False
    assert probe.probed == []
    assert index.get_movie(bad).preview_info is None

    run_jobs(pipeline, [PreviewJob(bad, "mp4"), PreviewJob(good, "mp4")])
    assert index.get_movie(bad).preview_info is None
    assert index.get_movie(good).preview_info is not None


def test_enqueue_racing_close_never_strands_jobs(tmp_path):
    index = MemoryCatalogIndex()
    pipeline = make_pipeline(index, NoPathStore(tmp_path), FakeProbe())
    pipeline.start()
    go = threading.Event()

    def producer(n):
        go.wait()
        for i in range(200):
            pipeline.enqueue(PreviewJob(f"p{n}-{i}", "mp4"))

    producers = [threading.Thread(target=producer, args=(n,)) for n in range(4)]
    for t in producers:
        t.start()
    go.set()
    pipeline.close()
    for t in producers:
        t.join(5)
    pipeline.join(5)

    assert not pipeline.is_alive()
    assert pipeline.pending() == 0
    drainer = threading.Thread(target=pipeline.drain, daemon=True)
    drainer.start()
    drainer.join(2)
    assert not drainer.is_alive()
