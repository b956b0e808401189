from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from equitybridge.db.models.processing_record import ProcessingRecord
from equitybridge.domain.enums import ProcessingStatus
from equitybridge.domain.models.events import ChainEvent
from equitybridge.exceptions import ConsistencyGapError


class ProcessingRecordRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, event_id: str) -> Optional[ProcessingRecord]:
        result = await self._session.execute(
            select(ProcessingRecord).where(ProcessingRecord.event_id == event_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, event: ChainEvent) -> tuple[ProcessingRecord, bool]:
        existing = await self.get(event.event_id)
        if existing is not None:
            return existing, False

        record = ProcessingRecord(
            event_id=event.event_id,
            kind=event.kind.value,
            symbol=event.symbol,
            token_amount=str(event.token_amount),
            block_number=event.block_number,
            log_index=event.log_index,
            tx_hash=event.transaction_hash.lower(),
            status=ProcessingStatus.PENDING.value,
            attempts=0,
            settlement_attempts=0,
            resolved=False,
        )
        self._session.add(record)
        await self._session.flush()
        return record, True

    async def list_records(
        self,
        status: Optional[str] = None,
        error_type: Optional[str] = None,
        kind: Optional[str] = None,
        resolved: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ProcessingRecord], int]:
        base = select(ProcessingRecord)
        count_q = select(func.count()).select_from(ProcessingRecord)

        filters = []
        if status:
            filters.append(ProcessingRecord.status == status)
        if error_type:
            filters.append(ProcessingRecord.error_type == error_type)
        if kind:
            filters.append(ProcessingRecord.kind == kind)
        if resolved is not None:
            filters.append(ProcessingRecord.resolved == resolved)
        if filters:
            base = base.where(*filters)
            count_q = count_q.where(*filters)

        total_result = await self._session.execute(count_q)
        total = total_result.scalar_one()

        result = await self._session.execute(
            base.order_by(ProcessingRecord.block_number.desc(), ProcessingRecord.log_index.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total

    async def get_summary(self) -> dict:
        """Counts by status plus the failures an operator still has to look at."""
        result = await self._session.execute(
            select(ProcessingRecord.status, func.count()).group_by(ProcessingRecord.status)
        )
        by_status = dict(result.all())

        gaps_result = await self._session.execute(
            select(func.count())
            .select_from(ProcessingRecord)
            .where(ProcessingRecord.error_type == ConsistencyGapError.error_type)
            .where(ProcessingRecord.resolved == False)  # noqa: E712
        )
        unresolved_result = await self._session.execute(
            select(func.count())
            .select_from(ProcessingRecord)
            .where(ProcessingRecord.status == ProcessingStatus.FAILED.value)
            .where(ProcessingRecord.resolved == False)  # noqa: E712
        )
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "unresolved_failures": unresolved_result.scalar_one(),
            "consistency_gaps": gaps_result.scalar_one(),
        }

    async def mark_resolved(self, event_id: str) -> Optional[ProcessingRecord]:
        record = await self.get(event_id)
        if record:
            record.resolved = True
            await self._session.flush()
        return record
