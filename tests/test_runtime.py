import threading
import time

import pytest

from svcorch.models import ActionKind
from svcorch.runtime import FifoSemaphore, ServiceLockTable


def test_lock_table_is_exclusive_per_key():
    locks = ServiceLockTable()
    a = ("/p1", "api")
    b = ("/p1", "web")

    assert locks.try_acquire(a, ActionKind.START)
    assert not locks.try_acquire(a, ActionKind.STOP)
    assert locks.try_acquire(b, ActionKind.BUILD)
    assert locks.in_flight(a) is ActionKind.START
    assert locks.in_flight(b) is ActionKind.BUILD

    locks.release(a)
    assert locks.in_flight(a) is None
    assert locks.try_acquire(a, ActionKind.STOP)
    assert sorted(locks.held_keys()) == [a, b]


def test_same_service_name_in_other_project_is_independent():
    locks = ServiceLockTable()
    assert locks.try_acquire(("/p1", "api"), ActionKind.START)
    assert locks.try_acquire(("/p2", "api"), ActionKind.START)


def test_concurrent_acquire_has_single_winner():
    locks = ServiceLockTable()
    key = ("/p1", "api")
    barrier = threading.Barrier(8)
    wins = []

    def worker():
        barrier.wait()
        wins.append(locks.try_acquire(key, ActionKind.START))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert wins.count(True) == 1


def test_semaphore_rejects_zero():
    with pytest.raises(ValueError):
        FifoSemaphore(0)


def test_semaphore_times_out_when_exhausted():
    sem = FifoSemaphore(1)
    assert sem.acquire()
    t0 = time.monotonic()
    assert sem.acquire(timeout=0.2) is False
    assert time.monotonic() - t0 >= 0.15
    assert sem.waiting == 0
    sem.release()
    assert sem.available == 1


def test_semaphore_serves_waiters_in_arrival_order():
    sem = FifoSemaphore(1)
    assert sem.acquire()
    order = []

    def waiter(i):
        assert sem.acquire(timeout=5)
        order.append(i)
        sem.release()

    threads = []
    for i in range(5):
        t = threading.Thread(target=waiter, args=(i,))
        t.start()
        threads.append(t)
        # Wait until this thread is queued before starting the next one.
        deadline = time.monotonic() + 2
        while sem.waiting < i + 1 and time.monotonic() < deadline:
            time.sleep(0.01)

    sem.release()
    for t in threads:
        t.join()
    assert order == [0, 1, 2, 3, 4]


def test_semaphore_timed_out_waiter_does_not_block_the_queue():
    sem = FifoSemaphore(1)
    assert sem.acquire()
    got = threading.Event()

    assert sem.acquire(timeout=0.05) is False

    def late():
        if sem.acquire(timeout=2):
            got.set()
            sem.release()

    t = threading.Thread(target=late)
    t.start()
    time.sleep(0.05)
    sem.release()
    t.join()
    assert got.is_set()


def test_semaphore_wait_ends_when_cancelled():
    sem = FifoSemaphore(1)
    assert sem.acquire()
    cancel = threading.Event()
    results = []

    t = threading.Thread(target=lambda: results.append(sem.acquire(cancel=cancel)))
    t.start()
    deadline = time.monotonic() + 2
    while sem.waiting < 1 and time.monotonic() < deadline:
        time.sleep(0.01)

    cancel.set()
    t.join(timeout=2)
    try:
        assert not t.is_alive()
        assert results == [False]
        assert sem.waiting == 0
        assert sem.available == 0
    finally:
        sem.release()
    assert sem.available == 1


def test_semaphore_refuses_an_already_cancelled_caller():
    sem = FifoSemaphore(1)
    cancel = threading.Event()
    cancel.set()
    assert sem.acquire(cancel=cancel) is False
    assert sem.available == 1
