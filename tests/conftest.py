import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure project root (one level up from this file) is on sys.path for imports like `import catalog`.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from catalog import Internal  # noqa: E402
from catalog_index import MemoryCatalogIndex  # noqa: E402
from media_probe import MediaProbe  # noqa: E402
from sqlite_index import SqliteCatalogIndex  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeProbe(MediaProbe):
    """Stands in for ffmpeg: fixed duration, canned PNG, optional failures."""

    def __init__(self, duration=10.0, fail_probe_for=(), fail_extract_for=()):
        self.duration = duration
        self.fail_probe_for = set(fail_probe_for)
        self.fail_extract_for = set(fail_extract_for)
        self.probed = []
        self.extracted = []

    def probe(self, path):
        self.probed.append(Path(path))
        if Path(path).parent.name in self.fail_probe_for:
            raise Internal(f"cannot probe {path}")
        return self.duration

    def extract_frame(self, path, timestamp):
        self.extracted.append((Path(path), timestamp))
        if Path(path).parent.name in self.fail_extract_for:
            raise Internal(f"cannot extract frame from {path}")
        return PNG_BYTES


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """Undo handlers/levels installed by configure_logging() (CLI and app startup)."""
    root = logging.getLogger()
    before_handlers = list(root.handlers)
    before_level = root.level
    yield
    for h in list(root.handlers):
        if h not in before_handlers:
            root.removeHandler(h)
    root.setLevel(before_level)


@pytest.fixture
def clock(monkeypatch):
    """Deterministic creation dates: each new entry is one second younger."""
    state = {"now": datetime(2024, 1, 1, tzinfo=timezone.utc)}

    def tick():
        state["now"] += timedelta(seconds=1)
        return state["now"]

    import catalog_index
    import sqlite_index

    monkeypatch.setattr(catalog_index, "utc_now", tick)
    monkeypatch.setattr(sqlite_index, "utc_now", tick)
    return state


@pytest.fixture(params=["memory", "sqlite"])
def index(request, tmp_path):
    if request.param == "memory":
        idx = MemoryCatalogIndex()
    else:
        idx = SqliteCatalogIndex(tmp_path / "movies.db")
    yield idx
    idx.close()
