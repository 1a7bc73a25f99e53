"""Reader/writer lock and the shared handle used by request handlers and the
preview worker.

    index = Shared(MemoryCatalogIndex())
    with index.read() as idx:
        idx.get_movie(id)
    with index.write() as idx:
        idx.update_preview_info(id, info)

Waiting writers block new readers, so a steady stream of searches cannot
starve the preview worker's index update.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Generic, Iterator, TypeVar

T = TypeVar("T")


class RWLock:
    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class Shared(Generic[T]):
    """A backend instance paired with its own reader/writer lock."""

    def __init__(self, value: T):
        self._value = value
        self.lock = RWLock()

    @contextmanager
    def read(self) -> Iterator[T]:
        with self.lock.read_locked():
            yield self._value

    @contextmanager
    def write(self) -> Iterator[T]:
        with self.lock.write_locked():
            yield self._value
