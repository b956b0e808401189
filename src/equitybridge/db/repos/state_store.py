"""Versioned key/value store backing the watermark and the run lease."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from equitybridge.db.models.worker_state import WorkerState

logger = logging.getLogger(__name__)

WATERMARK_KEY = "last_processed_block"


@dataclass(frozen=True)
class StateEntry:
    key: str
    value: str
    version: int


class StateStore:
    """``get`` + ``compare_and_set``. Callers flush/commit through the session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, key: str) -> Optional[StateEntry]:
        result = await self._session.execute(
            select(WorkerState)
            .where(WorkerState.key == key)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return StateEntry(key=row.key, value=row.value, version=row.version)

    async def compare_and_set(self, key: str, expected_version: Optional[int], value: str) -> bool:
        """Write ``value`` if the stored version still equals ``expected_version``.

        ``expected_version=None`` means "only if the key does not exist yet".
        """
        if expected_version is None:
            try:
                async with self._session.begin_nested():
                    self._session.add(WorkerState(key=key, value=value, version=1))
            except IntegrityError:
                logger.debug("State key %s already exists", key)
                return False
            return True

        result = await self._session.execute(
            update(WorkerState)
            .where(WorkerState.key == key, WorkerState.version == expected_version)
            .values(value=value, version=WorkerState.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class WatermarkStore:
    """Last fully scanned block. Never moves backwards."""

    def __init__(self, store: StateStore, max_conflicts: int = 3) -> None:
        self._store = store
        self._max_conflicts = max_conflicts

    async def get(self) -> Optional[int]:
        entry = await self._store.get(WATERMARK_KEY)
        if entry is None or entry.value == "":
            return None
        return int(entry.value)

    async def advance(self, block: int) -> int:
        """Move the watermark to ``block`` if that is forward. Returns the stored value."""
        for _ in range(self._max_conflicts):
            entry = await self._store.get(WATERMARK_KEY)
            current = int(entry.value) if entry is not None and entry.value else None
            if current is not None and current >= block:
                return current
            expected = entry.version if entry is not None else None
            if await self._store.compare_and_set(WATERMARK_KEY, expected, str(block)):
                logger.info("Watermark advanced %s -> %d", current, block)
                return block
            logger.warning("Watermark write conflict at block %d, re-reading", block)
        raise RuntimeError(f"Could not advance watermark to {block}: concurrent writers")
