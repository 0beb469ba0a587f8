"""
Single-flight run locks for the point calculation job.

A run lock is a single slot: acquire never blocks, a second caller simply
gets False and skips its run. The holder releases after completion or
failure.

  RunLock       - in-process slot (API-triggered runs, tests)
  RedisRunLock  - cross-worker slot backed by a redis-py Lock with expiry,
                  so a crashed worker cannot wedge the schedule forever
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager

import redis
import structlog
from redis.exceptions import LockError

logger = structlog.get_logger()

LOCK_KEY_PREFIX = "pointledger:run-lock"


class _SingleSlot(ABC):
    name: str

    @abstractmethod
    def acquire(self) -> bool: ...

    @abstractmethod
    def release(self) -> None: ...

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """Yield whether the slot was acquired; release on exit only if it was."""
        acquired = self.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


class RunLock(_SingleSlot):
    def __init__(self, name: str):
        self.name = name
        self._slot = threading.Lock()

    def acquire(self) -> bool:
        return self._slot.acquire(blocking=False)

    def release(self) -> None:
        self._slot.release()

    @property
    def locked(self) -> bool:
        return self._slot.locked()


class RedisRunLock(_SingleSlot):
    def __init__(
        self,
        name: str,
        redis_url: str | None = None,
        timeout: int | None = None,
        client: redis.Redis | None = None,
    ):
        if client is None:
            if redis_url is None:
                raise ValueError("redis_url or client is required")
            client = redis.Redis.from_url(redis_url)
        self.name = name
        self._lock = client.lock(f"{LOCK_KEY_PREFIX}:{name}", timeout=timeout, blocking=False)

    def acquire(self) -> bool:
        return bool(self._lock.acquire(blocking=False))

    def release(self) -> None:
        try:
            self._lock.release()
        except LockError:
            # Expired while the run was still going; nothing left to release
            logger.warning("points.run_lock.release_expired", name=self.name)

    @property
    def locked(self) -> bool:
        return bool(self._lock.locked())
