"""Single-flight lease for reconciliation runs, stored in worker_state.

Shared by every process pointed at the same database (API, Celery beat,
manual scripts). Each acquisition gets its own token, so two callers in one
process never share a lease. A live run renews its lease between events;
a holder that dies leaves the lease to expire after ``ttl_seconds``.
"""

import json
import logging
import os
import socket
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from equitybridge.db.repos.state_store import StateStore
from equitybridge.exceptions import AlreadyRunningError, LeaseLostError

logger = logging.getLogger(__name__)

LOCK_KEY = "reconciliation_lock"


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class Lease:
    """One acquisition of the run lock."""

    def __init__(self, lock: "RunLock", token: str, expires_at: float) -> None:
        self._lock = lock
        self.token = token
        self.expires_at = expires_at

    async def renew(self) -> None:
        await self._lock.renew(self)


class RunLock:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_seconds: float = 600,
        owner: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session_factory = session_factory
        self._ttl_seconds = ttl_seconds
        self.owner = owner or default_owner()
        self._clock = clock

    def _encode(self, token: str, expires_at: float) -> str:
        return json.dumps({"owner": self.owner, "token": token, "expires_at": expires_at})

    async def acquire(self) -> Optional[Lease]:
        """Take the lease unless anyone, this process included, holds an unexpired one."""
        async with self._session_factory() as session:
            store = StateStore(session)
            entry = await store.get(LOCK_KEY)
            now = self._clock()
            if entry is not None and entry.value:
                held = json.loads(entry.value)
                if held.get("expires_at", 0) > now:
                    logger.info("Run lock held by %s for another %.0fs", held.get("owner"), held["expires_at"] - now)
                    return None

            lease = Lease(self, uuid.uuid4().hex, now + self._ttl_seconds)
            expected = entry.version if entry is not None else None
            if not await store.compare_and_set(LOCK_KEY, expected, self._encode(lease.token, lease.expires_at)):
                await session.rollback()
                logger.info("Lost the race for the run lock")
                return None
            await session.commit()
        logger.debug("Run lock acquired by %s (%s)", self.owner, lease.token)
        return lease

    async def renew(self, lease: Lease) -> None:
        """Push the expiry out again. Raises LeaseLostError if the lease is no longer ours.

        A lease with more than half its TTL left is not rewritten.
        """
        now = self._clock()
        if now < lease.expires_at - self._ttl_seconds / 2:
            return
        try:
            async with self._session_factory() as session:
                store = StateStore(session)
                entry = await store.get(LOCK_KEY)
                if entry is None or not entry.value or json.loads(entry.value).get("token") != lease.token:
                    raise LeaseLostError("run lease was taken over by another run")
                expires_at = now + self._ttl_seconds
                if not await store.compare_and_set(LOCK_KEY, entry.version, self._encode(lease.token, expires_at)):
                    await session.rollback()
                    raise LeaseLostError("run lease changed while renewing")
                await session.commit()
        except SQLAlchemyError as e:
            raise LeaseLostError(f"could not renew run lease: {e}") from e
        lease.expires_at = expires_at
        logger.debug("Run lease %s renewed until %.0f", lease.token, expires_at)

    async def release(self, lease: Lease) -> None:
        try:
            async with self._session_factory() as session:
                store = StateStore(session)
                entry = await store.get(LOCK_KEY)
                if entry is None or not entry.value or json.loads(entry.value).get("token") != lease.token:
                    return
                if await store.compare_and_set(LOCK_KEY, entry.version, ""):
                    await session.commit()
                    logger.debug("Run lock released by %s (%s)", self.owner, lease.token)
        except SQLAlchemyError:
            logger.warning("Could not release run lock; it expires in %ss", self._ttl_seconds, exc_info=True)

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[Lease]:
        lease = await self.acquire()
        if lease is None:
            raise AlreadyRunningError("already running")
        try:
            yield lease
        finally:
            await self.release(lease)
