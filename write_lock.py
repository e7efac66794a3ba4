"""Advisory write lock.

A single process-wide lock serialises every multi-step mutation (PIN set,
work save, teacher registration and approval, ...). Waiting is bounded:
``try_acquire`` returns False after ``timeout`` seconds instead of raising.
Every hold is a lease; a holder that never releases (crashed or abandoned
request) loses the lock after ``lease`` seconds so later writers are not
blocked forever.

Two interchangeable backends:

- LocalWriteLock: threading.Condition, valid within one process.
- RedisWriteLock: redis-py Lock, valid across worker processes.

Ownership is tracked per thread, so one lock object may be shared by all
request threads.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Iterator, Protocol

logger = logging.getLogger(__name__)

LOCK_NAME = "classroom:write-lock"


class LockContention(Exception):
    """The write lock could not be acquired within the allowed wait."""

    def __init__(self, timeout: float):
        super().__init__(f"Write lock busy for {timeout:g}s")
        self.timeout = timeout


class WriteLock(Protocol):
    def try_acquire(self, timeout: float) -> bool: ...
    def release(self) -> None: ...


class LocalWriteLock:
    """In-process lease lock."""

    def __init__(self, lease: float = 30.0, clock=time.monotonic) -> None:
        self.lease = lease
        self._clock = clock
        self._cond = threading.Condition()
        self._holder: str | None = None
        self._expires_at = 0.0
        self._local = threading.local()

    def _free(self) -> bool:
        if self._holder is None:
            return True
        if self._clock() >= self._expires_at:
            logger.warning("Write lock lease expired; taking over from stale holder")
            self._holder = None
            return True
        return False

    def try_acquire(self, timeout: float) -> bool:
        deadline = self._clock() + timeout
        token = uuid.uuid4().hex
        with self._cond:
            while not self._free():
                remaining = deadline - self._clock()
                if remaining <= 0:
                    return False
                # wake up at the latest when the current lease runs out
                self._cond.wait(min(remaining, max(self._expires_at - self._clock(), 0.01)))
            self._holder = token
            self._expires_at = self._clock() + self.lease
        self._local.token = token
        return True

    def release(self) -> None:
        token = getattr(self._local, "token", None)
        self._local.token = None
        with self._cond:
            if token is None or token != self._holder:
                logger.warning("Write lock released by a non-holder (lease expired?)")
                return
            self._holder = None
            self._cond.notify_all()

    @property
    def locked(self) -> bool:
        with self._cond:
            return not self._free()


class RedisWriteLock:
    """redis-py Lock with a lease (``timeout``) and bounded wait."""

    def __init__(self, redis_client, lease: float = 30.0, name: str = LOCK_NAME) -> None:
        self.lease = lease
        self._lock = redis_client.lock(name, timeout=lease, thread_local=True)

    def try_acquire(self, timeout: float) -> bool:
        return bool(self._lock.acquire(blocking=True, blocking_timeout=timeout))

    def release(self) -> None:
        from redis.exceptions import LockError

        try:
            self._lock.release()
        except LockError as e:
            logger.warning("Write lock release failed (lease expired?): %s", e)


@contextmanager
def held(lock: WriteLock, timeout: float) -> Iterator[None]:
    """Hold ``lock`` for the body; raise LockContention if it cannot be had.

    The lock is released on every exit path, including exceptions.
    """
    started = time.monotonic()
    if not lock.try_acquire(timeout):
        logger.warning("Write lock not acquired within %.1fs", timeout)
        raise LockContention(timeout)
    logger.debug("Write lock acquired after %.3fs", time.monotonic() - started)
    try:
        yield
    finally:
        lock.release()


# ── Module-level singleton ────────────────────────────────

_lock: WriteLock | None = None


def init_write_lock(app, redis_client=None) -> None:
    """Select the lock backend. Call once from create_app()."""
    global _lock
    lease = float(app.config.get("WRITE_LOCK_LEASE", 30))
    if redis_client is not None:
        _lock = RedisWriteLock(redis_client, lease=lease)
        app.logger.info("Write lock: Redis (lease=%ss)", lease)
    else:
        _lock = LocalWriteLock(lease=lease)
        app.logger.info("Write lock: in-process (lease=%ss)", lease)


def get_write_lock() -> WriteLock:
    global _lock
    if _lock is None:
        _lock = LocalWriteLock()
    return _lock
