"""ReconciliationEngine: chain request events -> brokerage orders -> on-chain settlement.

One run scans a bounded block range past the watermark, drives every event
in (block_number, log_index) order through its ProcessingRecord state
machine and then advances the watermark. Every state transition is
committed before the next external call, so a crashed run resumes from the
record instead of repeating side effects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from functools import partial
from typing import TYPE_CHECKING, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from equitybridge.db.models.processing_record import ProcessingRecord
from equitybridge.db.repos.processing_record_repo import ProcessingRecordRepo
from equitybridge.db.repos.state_store import StateStore, WatermarkStore
from equitybridge.domain.enums import EventKind, OrderSide, ProcessingStatus, RunStatus, TimeInForce
from equitybridge.domain.models.brokerage import Order
from equitybridge.domain.models.events import ChainEvent
from equitybridge.domain.models.results import EventResult, RunResult
from equitybridge.domain.quantity import (
    MAX_QUANTITY_DECIMALS,
    format_quantity,
    quantity_decimals,
    token_amount_to_quantity,
)
from equitybridge.exceptions import (
    ConsistencyGapError,
    DependencyError,
    LeaseLostError,
    ReconciliationError,
    TerminalBrokerageError,
    TerminalDependencyError,
    TransientDependencyError,
    ValidationError,
)
from equitybridge.infra.blockchain.evm.settlement_contract import SignedSettlement

if TYPE_CHECKING:
    from equitybridge.catalog.asset_catalog import AssetCatalog
    from equitybridge.config import Settings
    from equitybridge.infra.blockchain.evm.settlement_contract import SettlementContract
    from equitybridge.infra.brokerage.alpaca_client import AlpacaClient
    from equitybridge.reconciliation.lock import Lease

logger = logging.getLogger(__name__)

CLIENT_ORDER_ID_PREFIX = "eb"

_NEEDS_ORDER = (ProcessingStatus.PENDING, ProcessingStatus.ORDER_PENDING)
_ORDER_EXECUTED = (ProcessingStatus.ORDER_PLACED, ProcessingStatus.SETTLEMENT_PENDING)


@dataclass
class EngineOptions:
    confirmation_lag: int = 3
    max_block_range: int = 2000
    initial_lookback_blocks: int = 100
    start_block: Optional[int] = None
    max_attempts: int = 4
    backoff_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    time_in_force: str = TimeInForce.DAY.value
    extended_hours: bool = False

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EngineOptions":
        return cls(
            confirmation_lag=settings.confirmation_lag,
            max_block_range=settings.max_block_range,
            initial_lookback_blocks=settings.initial_lookback_blocks,
            start_block=settings.start_block,
            max_attempts=settings.max_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
            backoff_max_seconds=settings.retry_backoff_max_seconds,
            time_in_force=settings.time_in_force,
            extended_hours=settings.extended_hours,
        )


@dataclass(frozen=True)
class ScanRange:
    from_block: int
    to_block: int
    watermark: Optional[int]

    @property
    def is_empty(self) -> bool:
        return self.to_block < self.from_block


def client_order_id_for(record: ProcessingRecord) -> str:
    """Deterministic per event, so a retried POST can be matched to an earlier one."""
    tx_hash = record.tx_hash[2:] if record.tx_hash.startswith("0x") else record.tx_hash
    return f"{CLIENT_ORDER_ID_PREFIX}-{tx_hash}-{record.log_index}"


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def _dead_order_error(order: Order) -> ReconciliationError:
    """A canceled, expired or rejected order backs nothing; any partial fill is a gap."""
    message = f"order {order.id} is {order.status} (filled {format_quantity(order.filled_qty)} of {order.qty})"
    if order.filled_qty > 0:
        return ConsistencyGapError(message)
    return TerminalBrokerageError(message, code=f"ORDER_{order.status.upper()}")


class ReconciliationEngine:
    """Watermark scan + per-event state machine. Not safe to run concurrently; see RunLock."""

    def __init__(
        self,
        session: AsyncSession,
        chain: "SettlementContract",
        brokerage: "AlpacaClient",
        catalog: "AssetCatalog",
        options: EngineOptions | None = None,
        lease: Optional["Lease"] = None,
    ) -> None:
        self._session = session
        self._chain = chain
        self._brokerage = brokerage
        self._catalog = catalog
        self._options = options or EngineOptions()
        self._lease = lease
        self._records = ProcessingRecordRepo(session)
        self._watermark = WatermarkStore(StateStore(session))

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> RunResult:
        try:
            scan = await self.plan_scan()
        except DependencyError as e:
            logger.error("Run aborted: could not read chain head: %s", e)
            return RunResult(success=False, status=RunStatus.ABORTED, error=str(e))

        if scan.is_empty:
            logger.debug("No new confirmed blocks past watermark %s", scan.watermark)
            return RunResult(success=True, status=RunStatus.NO_NEW_BLOCKS, watermark=scan.watermark)

        try:
            events = await self._chain.get_all_events(scan.from_block, scan.to_block)
            deferred = await self._preflight(events)
        except ReconciliationError as e:
            await self._session.rollback()
            logger.error("Run aborted for blocks %d-%d: %s", scan.from_block, scan.to_block, e)
            return RunResult(
                success=False,
                status=RunStatus.ABORTED,
                from_block=scan.from_block,
                to_block=scan.to_block,
                watermark=scan.watermark,
                error=str(e),
            )

        logger.info("Scanning blocks %d-%d: %d request events", scan.from_block, scan.to_block, len(events))
        results: list[EventResult] = []
        first_deferred_block: Optional[int] = None
        try:
            for event in events:
                if event.event_id in deferred:
                    if first_deferred_block is None:
                        first_deferred_block = event.block_number
                    continue
                await self._keep_lease()
                results.append(await self.process_event(event))
        except LeaseLostError as e:
            await self._session.rollback()
            logger.error("Run aborted after %d of %d events: %s", len(results), len(events), e)
            return RunResult(
                success=False,
                status=RunStatus.ABORTED,
                from_block=scan.from_block,
                to_block=scan.to_block,
                watermark=scan.watermark,
                error=str(e),
            )

        # Deferred events are rescanned next run, so the watermark stops short of them.
        target = scan.to_block if first_deferred_block is None else first_deferred_block - 1
        watermark = await self._watermark.advance(target)
        await self._session.commit()

        result = RunResult.from_events(results, scan.from_block, scan.to_block, watermark, deferred=len(deferred))
        logger.info(
            "Run complete: %d settled, %d failed, %d skipped, %d deferred (watermark %d)",
            result.settled, result.failed, result.skipped, result.deferred, watermark,
        )
        return result

    async def plan_scan(self) -> ScanRange:
        """Next block range: past the watermark, behind the confirmation lag, capped in size."""
        opts = self._options
        head = await self._chain.get_block_number()
        safe_head = head - opts.confirmation_lag
        watermark = await self._watermark.get()

        if watermark is not None:
            from_block = watermark + 1
        elif opts.start_block is not None:
            from_block = opts.start_block
        else:
            from_block = max(0, safe_head - opts.initial_lookback_blocks + 1)

        to_block = min(safe_head, from_block + opts.max_block_range - 1)
        return ScanRange(from_block=from_block, to_block=to_block, watermark=watermark)

    async def _preflight(self, events: list[ChainEvent]) -> set[str]:
        """Brokerage checks ahead of any order. Touches no record.

        Raises when no pending order could be placed at all. Otherwise returns
        the ids of events whose side the account cannot trade right now
        (buys without buying power); those are left for a later run.
        """
        pending: dict[str, OrderSide] = {}
        for event in events:
            record = await self._records.get(event.event_id)
            if record is None or record.processing_status in _NEEDS_ORDER:
                pending[event.event_id] = event.order_side
        if not pending:
            return set()

        await self._catalog.list_supported_assets()
        account = await self._brokerage.get_account()
        sides = set(pending.values())
        blocked = {side for side in sides if not account.trading_allowed(side)}
        if blocked == sides:
            raise TerminalDependencyError(
                f"Brokerage account {account.id} is not eligible to {'/'.join(sorted(s.value for s in blocked))} "
                f"(status={account.status}, trading_blocked={account.trading_blocked}, "
                f"buying_power={account.buying_power})",
                code="ACCOUNT_NOT_ELIGIBLE",
            )

        deferred = {event_id for event_id, side in pending.items() if side in blocked}
        if deferred:
            logger.warning(
                "Account %s cannot %s (buying_power=%s): deferring %d events",
                account.id, "/".join(sorted(s.value for s in blocked)), account.buying_power, len(deferred),
            )
        return deferred

    async def _keep_lease(self) -> None:
        if self._lease is not None:
            await self._lease.renew()

    # ------------------------------------------------------------------
    # Per event
    # ------------------------------------------------------------------

    async def process_event(self, event: ChainEvent) -> EventResult:
        record, created = await self._records.get_or_create(event)
        if created:
            await self._session.commit()
            logger.info(
                "New %s %s: %s amount=%d (block %d)",
                event.kind.value, record.event_id, event.symbol, event.token_amount, event.block_number,
            )
        elif record.processing_status.is_terminal:
            logger.debug("Skipping %s: already %s", record.event_id, record.status)
            return self._result(record, skipped=True)
        else:
            logger.info("Resuming %s from %s", record.event_id, record.status)

        try:
            await self._drive(record)
        except LeaseLostError:
            raise
        except Exception as e:
            # One event's failure must not abort its siblings.
            logger.exception("Unexpected error processing %s", record.event_id)
            await self._session.rollback()
            await self._session.refresh(record)
            await self._fail(record, e, consistency_gap=record.processing_status in _ORDER_EXECUTED)
        return self._result(record)

    async def _drive(self, record: ProcessingRecord) -> None:
        if record.processing_status == ProcessingStatus.PENDING:
            try:
                quantity = await self._validate(record)
            except ValidationError as e:
                await self._fail(record, e)
                return
            record.quantity = format_quantity(quantity)
            record.client_order_id = client_order_id_for(record)
            record.status = ProcessingStatus.ORDER_PENDING.value
            await self._session.commit()

        if record.processing_status == ProcessingStatus.ORDER_PENDING:
            if not await self._place_order(record):
                return

        if record.processing_status in _ORDER_EXECUTED:
            await self._settle(record)

    async def _validate(self, record: ProcessingRecord) -> Decimal:
        if not record.symbol or not record.symbol.strip():
            raise ValidationError("event carries an empty symbol")
        if record.amount <= 0:
            raise ValidationError(f"token amount must be positive, got {record.amount}")

        asset = await self._catalog.get(record.symbol)
        if asset is None:
            raise ValidationError(f"symbol {record.symbol!r} is not a supported asset")
        if not asset.tradable:
            raise ValidationError(f"symbol {record.symbol!r} is not currently tradable")

        quantity = token_amount_to_quantity(record.amount)
        if quantity_decimals(quantity) > MAX_QUANTITY_DECIMALS:
            raise ValidationError(
                f"quantity {format_quantity(quantity)} has more than {MAX_QUANTITY_DECIMALS} decimal places"
            )
        if quantity != quantity.to_integral_value() and not asset.fractionable:
            raise ValidationError(f"{record.symbol} is not fractionable, got quantity {format_quantity(quantity)}")
        return quantity

    def _retrying(self) -> AsyncRetrying:
        opts = self._options
        return AsyncRetrying(
            retry=retry_if_exception_type(TransientDependencyError),
            stop=stop_after_attempt(opts.max_attempts),
            wait=wait_exponential(multiplier=opts.backoff_seconds, max=opts.backoff_max_seconds),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    # ------------------------------------------------------------------
    # Order placement
    # ------------------------------------------------------------------

    async def _place_order(self, record: ProcessingRecord) -> bool:
        side = OrderSide.BUY if record.event_kind == EventKind.MINT_REQUESTED else OrderSide.SELL
        try:
            async for attempt in self._retrying():
                with attempt:
                    order = await self._order_attempt(record, side)
        except (DependencyError, ValidationError, ConsistencyGapError) as e:
            await self._fail(record, e, consistency_gap=isinstance(e, ConsistencyGapError))
            return False

        record.brokerage_order_id = order.id
        record.status = ProcessingStatus.ORDER_PLACED.value
        await self._session.commit()
        logger.info(
            "Order %s placed for %s: %s %s %s",
            order.id, record.event_id, side.value, record.quantity, record.symbol,
        )
        return True

    async def _order_attempt(self, record: ProcessingRecord, side: OrderSide) -> Order:
        await self._keep_lease()
        prior_attempts = record.attempts
        record.attempts = prior_attempts + 1
        await self._session.commit()
        try:
            order = None
            if prior_attempts > 0:
                # An earlier POST may have reached the brokerage before failing.
                order = await self._brokerage.get_order_by_client_order_id(record.client_order_id)
                if order is not None:
                    logger.info("Adopting existing order %s (%s) for %s", order.id, order.status, record.event_id)
            if order is None:
                if side == OrderSide.SELL:
                    await self._check_position(record)
                order = await self._brokerage.place_market_order(
                    record.symbol,
                    Decimal(record.quantity),
                    side,
                    time_in_force=self._options.time_in_force,
                    extended_hours=self._options.extended_hours,
                    client_order_id=record.client_order_id,
                )
            if order.is_dead:
                record.brokerage_order_id = order.id
                raise _dead_order_error(order)
            return order
        except ReconciliationError as e:
            record.last_error = _describe(e)
            await self._session.commit()
            raise

    async def _check_position(self, record: ProcessingRecord) -> None:
        """A sell must be covered by the shares the account actually holds."""
        position = await self._brokerage.get_position(record.symbol)
        quantity = Decimal(record.quantity)
        if position is None:
            raise ValidationError(f"cannot sell {record.quantity} {record.symbol}: no open position")
        if position.qty < quantity:
            raise ValidationError(
                f"cannot sell {record.quantity} {record.symbol}: position is only {format_quantity(position.qty)}"
            )

    async def _confirm_order(self, record: ProcessingRecord) -> bool:
        """Re-read the placed order so a canceled or rejected one is never settled."""
        try:
            async for attempt in self._retrying():
                with attempt:
                    order = await self._brokerage.get_order(record.brokerage_order_id)
        except DependencyError as e:
            await self._fail(record, e, consistency_gap=True)
            return False
        if order.is_dead:
            error = _dead_order_error(order)
            await self._fail(record, error, consistency_gap=isinstance(error, ConsistencyGapError))
            return False
        return True

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def _settle(self, record: ProcessingRecord) -> None:
        if record.processing_status == ProcessingStatus.ORDER_PLACED and not await self._confirm_order(record):
            return

        if record.event_kind == EventKind.REDEEM_REQUESTED:
            # The deployed contract exposes no settlement entry point for redemptions.
            await self._mark_settled(record)
            return

        try:
            async for attempt in self._retrying():
                with attempt:
                    await self._settlement_attempt(record)
        except LeaseLostError:
            raise
        except ReconciliationError as e:
            await self._fail(record, e, consistency_gap=True)

    async def _settlement_attempt(self, record: ProcessingRecord) -> None:
        await self._keep_lease()
        record.settlement_attempts += 1
        await self._session.commit()
        reused_nonce = record.settlement_nonce
        try:
            if record.known_settlement_hashes:
                for tx_hash in record.known_settlement_hashes:
                    if await self._chain.transaction_exists(tx_hash):
                        logger.info("Settlement %s for %s already on chain", tx_hash, record.event_id)
                        record.settlement_tx_hash = tx_hash
                        await self._mark_settled(record)
                        return
                if reused_nonce is not None and await self._chain.nonce_consumed(reused_nonce):
                    raise ConsistencyGapError(
                        f"nonce {reused_nonce} was consumed but none of "
                        f"{', '.join(record.known_settlement_hashes)} is known to the node"
                    )

            tx_hash = await self._chain.submit_settlement(
                record.symbol,
                record.amount,
                nonce=reused_nonce,
                on_signed=partial(self._record_signed, record),
            )
        except DependencyError as e:
            if e.broadcast_rejected and reused_nonce is None:
                # Fresh nonce, node refused it: nothing of ours is in flight.
                record.settlement_tx_hash = None
                record.settlement_nonce = None
            record.last_error = _describe(e)
            await self._session.commit()
            raise

        record.settlement_tx_hash = tx_hash
        await self._mark_settled(record)

    async def _record_signed(self, record: ProcessingRecord, signed: SignedSettlement) -> None:
        """Persist hash + nonce before the broadcast so a crash cannot lose them."""
        if record.settlement_tx_hash and record.settlement_tx_hash != signed.tx_hash:
            prior = record.prior_settlement_tx_hashes
            record.prior_settlement_tx_hashes = f"{prior} {record.settlement_tx_hash}" if prior else record.settlement_tx_hash
        record.settlement_tx_hash = signed.tx_hash
        record.settlement_nonce = signed.nonce
        record.status = ProcessingStatus.SETTLEMENT_PENDING.value
        await self._session.commit()

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    async def _mark_settled(self, record: ProcessingRecord) -> None:
        record.status = ProcessingStatus.SETTLED.value
        await self._session.commit()
        logger.info(
            "Settled %s: order=%s settlement=%s",
            record.event_id, record.brokerage_order_id, record.settlement_tx_hash or "-",
        )

    async def _fail(self, record: ProcessingRecord, exc: BaseException, consistency_gap: bool = False) -> None:
        record.status = ProcessingStatus.FAILED.value
        record.last_error = _describe(exc)
        if consistency_gap:
            record.error_type = ConsistencyGapError.error_type
            logger.error(
                "CONSISTENCY GAP on %s: order %s executed but settlement failed: %s",
                record.event_id, record.brokerage_order_id, record.last_error,
            )
        else:
            record.error_type = getattr(exc, "error_type", "UnexpectedError")
            logger.warning("Failed %s (%s): %s", record.event_id, record.error_type, record.last_error)
        await self._session.commit()

    @staticmethod
    def _result(record: ProcessingRecord, skipped: bool = False) -> EventResult:
        return EventResult(
            event_id=record.event_id,
            kind=record.event_kind,
            symbol=record.symbol,
            token_amount=record.token_amount,
            quantity=record.quantity,
            block_number=record.block_number,
            log_index=record.log_index,
            transaction_hash=record.tx_hash,
            status=record.processing_status,
            skipped=skipped,
            brokerage_order_id=record.brokerage_order_id,
            settlement_tx_hash=record.settlement_tx_hash,
            attempts=record.attempts,
            settlement_attempts=record.settlement_attempts,
            error_type=record.error_type,
            error=record.last_error,
        )
