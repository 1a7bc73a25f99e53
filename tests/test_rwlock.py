import threading
import time

from rwlock import RWLock, Shared


def test_readers_share_the_lock():
    lock = RWLock()
    inside = threading.Barrier(2, timeout=2)

    def reader():
        with lock.read_locked():
            inside.wait()

    threads = [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(2)
    assert not any(t.is_alive() for t in threads)


def test_writer_excludes_readers():
    shared = Shared([])
    entered = threading.Event()

    def reader():
        with shared.read() as items:
            items.append("read")
            entered.set()

    with shared.write() as items:
        t = threading.Thread(target=reader)
        t.start()
        assert not entered.wait(0.1)
        items.append("write")
    t.join(2)
    assert entered.is_set()
    with shared.read() as items:
        assert items == ["write", "read"]


def test_waiting_writer_blocks_new_readers():
    lock = RWLock()
    order = []
    lock.acquire_read()

    def writer():
        with lock.write_locked():
            order.append("writer")

    def late_reader():
        with lock.read_locked():
            order.append("reader")

    w = threading.Thread(target=writer)
    w.start()
    time.sleep(0.1)
    r = threading.Thread(target=late_reader)
    r.start()
    time.sleep(0.1)
    assert order == []
    lock.release_read()
    w.join(2)
    r.join(2)
    assert order == ["writer", "reader"]
