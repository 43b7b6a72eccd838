from __future__ import annotations

import time
from collections import deque
from datetime import datetime, timezone
from threading import Condition, Event, Lock
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ActionKind

ServiceKey = tuple[str, str]  # (project_root, service_name)

_CANCEL_POLL_S = 0.05


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ServiceLockTable:
    """Per-service exclusive locks, created lazily on first use.

    Acquisition never blocks: a held lock means another lifecycle action for
    the same service is in flight and the caller is told so immediately.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[ServiceKey, Lock] = {}
        self._in_flight: dict[ServiceKey, ActionKind] = {}

    def try_acquire(self, key: ServiceKey, kind: ActionKind) -> bool:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = Lock()
            if not lock.acquire(blocking=False):
                return False
            self._in_flight[key] = kind
            return True

    def release(self, key: ServiceKey) -> None:
        with self._guard:
            self._in_flight.pop(key, None)
            self._locks[key].release()

    def in_flight(self, key: ServiceKey) -> ActionKind | None:
        """Action kind currently holding the lock for key, without taking it."""
        with self._guard:
            return self._in_flight.get(key)

    def held_keys(self) -> list[ServiceKey]:
        with self._guard:
            return list(self._in_flight)


class FifoSemaphore:
    """Counting semaphore that hands out slots in arrival order."""

    def __init__(self, value: int) -> None:
        if value < 1:
            raise ValueError("semaphore value must be >= 1")
        self._value = value
        self._cond = Condition(Lock())
        self._waiters: deque[object] = deque()

    def acquire(self, timeout: float | None = None, cancel: Event | None = None) -> bool:
        """Take a slot; False when `timeout` runs out or `cancel` is set first."""
        with self._cond:
            if cancel is not None and cancel.is_set():
                return False
            if self._value > 0 and not self._waiters:
                self._value -= 1
                return True

            ticket = object()
            self._waiters.append(ticket)
            end = None if timeout is None else time.monotonic() + max(0.0, timeout)
            while True:
                if self._waiters[0] is ticket and self._value > 0:
                    self._waiters.popleft()
                    self._value -= 1
                    if self._value > 0 and self._waiters:
                        self._cond.notify_all()
                    return True
                remaining = None if end is None else end - time.monotonic()
                if (remaining is not None and remaining <= 0) or (cancel is not None and cancel.is_set()):
                    self._waiters.remove(ticket)
                    # The next waiter may now be at the head.
                    self._cond.notify_all()
                    return False
                if cancel is not None:
                    # Nothing notifies on cancel; wake up to look at it.
                    remaining = _CANCEL_POLL_S if remaining is None else min(remaining, _CANCEL_POLL_S)
                self._cond.wait(remaining)

    def release(self) -> None:
        with self._cond:
            self._value += 1
            self._cond.notify_all()

    @property
    def available(self) -> int:
        with self._cond:
            return self._value

    @property
    def waiting(self) -> int:
        with self._cond:
            return len(self._waiters)
