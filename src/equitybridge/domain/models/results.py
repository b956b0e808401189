"""Per-event and per-run outcomes returned to the scheduler / HTTP caller."""

from typing import Optional

from pydantic import BaseModel, Field

from equitybridge.domain.enums import EventKind, ProcessingStatus, RunStatus


class EventResult(BaseModel):
    event_id: str
    kind: EventKind
    symbol: str
    token_amount: str
    quantity: Optional[str] = None
    block_number: int
    log_index: int
    transaction_hash: str
    status: ProcessingStatus
    skipped: bool = False  # already terminal before this run
    brokerage_order_id: Optional[str] = None
    settlement_tx_hash: Optional[str] = None
    attempts: int = 0
    settlement_attempts: int = 0
    error_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == ProcessingStatus.SETTLED


class ProcessedEvents(BaseModel):
    buys: list[EventResult] = []
    sells: list[EventResult] = []


class RunResult(BaseModel):
    success: bool
    status: RunStatus
    processed: ProcessedEvents = Field(default_factory=ProcessedEvents)
    settled: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0  # left for a later run, e.g. buys while buying power is exhausted
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    watermark: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def already_running(cls) -> "RunResult":
        return cls(success=False, status=RunStatus.ALREADY_RUNNING, error="already running")

    @classmethod
    def from_events(
        cls,
        results: list[EventResult],
        from_block: int,
        to_block: int,
        watermark: int,
        deferred: int = 0,
    ) -> "RunResult":
        processed = ProcessedEvents(
            buys=[r for r in results if r.kind == EventKind.MINT_REQUESTED],
            sells=[r for r in results if r.kind == EventKind.REDEEM_REQUESTED],
        )
        fresh = [r for r in results if not r.skipped]
        return cls(
            success=True,
            status=RunStatus.COMPLETED,
            processed=processed,
            settled=sum(1 for r in fresh if r.status == ProcessingStatus.SETTLED),
            failed=sum(1 for r in fresh if r.status == ProcessingStatus.FAILED),
            skipped=len(results) - len(fresh),
            deferred=deferred,
            from_block=from_block,
            to_block=to_block,
            watermark=watermark,
        )
