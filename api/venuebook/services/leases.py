"""Exclusive leases used by the booking and reconciliation paths.

CourtLeases serializes booking writes per court inside one process, held across
the conflict check and the commit. The row locks taken inside the booking
transaction (SELECT ... FOR UPDATE on the courts) extend the same exclusion
across processes on Postgres.

The run locks keep two reconciliation passes from writing to the same external
events at once. LocalRunLock only guards one process; RedisRunLock is the
drop-in for several workers. Both expire after a lease so a crashed pass cannot
block reconciliation forever.
"""

import asyncio
import logging
import threading
import time
import uuid
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from typing import Protocol

from redis.asyncio import Redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockError

from venuebook.core.config import Settings

logger = logging.getLogger(__name__)


class CourtLeases:
    """Per-court asyncio locks, acquired in ascending court id order."""

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, court_id: int) -> asyncio.Lock:
        lock = self._locks.get(court_id)
        if lock is None:
            lock = self._locks[court_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, court_ids: Iterable[int]) -> AsyncIterator[None]:
        # Sorted order so two multi-court bookings can never deadlock
        locks = [self._lock_for(cid) for cid in sorted(set(court_ids))]
        acquired: list[asyncio.Lock] = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


class RunLock(Protocol):
    """acquire() returns a token for the new lease, or None while another run holds it."""

    async def acquire(self) -> str | None: ...

    async def release(self, token: str) -> None: ...


class LocalRunLock:
    """In-process "a run is already active" guard with a lease timeout."""

    def __init__(self, lease_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.lease_seconds = lease_seconds
        self._clock = clock
        self._mutex = threading.Lock()
        self._expires_at: float | None = None
        self._token: str | None = None

    @property
    def held(self) -> bool:
        with self._mutex:
            return self._expires_at is not None and self._clock() < self._expires_at

    async def acquire(self) -> str | None:
        with self._mutex:
            now = self._clock()
            if self._expires_at is not None and now < self._expires_at:
                return None
            if self._expires_at is not None:
                logger.warning("Reconciliation lease expired without release, taking over")
            self._expires_at = now + self.lease_seconds
            self._token = uuid.uuid4().hex
            return self._token

    async def release(self, token: str) -> None:
        """Release the lease if `token` still owns it. A holder whose lease was taken over releases nothing."""
        with self._mutex:
            if token != self._token:
                logger.warning("Reconciliation lease was taken over before release")
                return
            self._expires_at = None
            self._token = None


class RedisRunLock:
    """Run guard shared by every worker that talks to the same Redis."""

    def __init__(self, client: Redis, key: str, lease_seconds: float):
        self.client = client
        self.key = key
        self.lease_seconds = lease_seconds
        self._held: dict[str, Lock] = {}

    @classmethod
    def from_url(cls, url: str, key: str, lease_seconds: float) -> "RedisRunLock":
        return cls(Redis.from_url(url), key, lease_seconds)

    async def acquire(self) -> str | None:
        token = uuid.uuid4().hex
        lock = self.client.lock(self.key, timeout=self.lease_seconds, blocking=False)
        if not await lock.acquire(token=token):
            return None
        self._held[token] = lock
        return token

    async def release(self, token: str) -> None:
        lock = self._held.pop(token, None)
        if lock is None:
            return
        try:
            await lock.release()
        except LockError:
            logger.warning("Reconciliation lock %s expired before release", self.key)

    async def close(self) -> None:
        await self.client.aclose()


_local_run_lock: LocalRunLock | None = None


def build_run_lock(config: Settings) -> RunLock:
    """Run lock for the configured backend. The in-memory lock is shared per process."""
    global _local_run_lock
    if config.sync_lock_backend == "redis":
        return RedisRunLock.from_url(config.redis_url, config.sync_lock_key, config.sync_lease_seconds)
    if config.sync_lock_backend != "memory":
        raise ValueError(f"Unknown sync lock backend: {config.sync_lock_backend}")
    if _local_run_lock is None:
        _local_run_lock = LocalRunLock(config.sync_lease_seconds)
    return _local_run_lock
