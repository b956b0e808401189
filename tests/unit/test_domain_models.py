from decimal import Decimal

from equitybridge.domain.enums import EventKind, OrderSide, ProcessingStatus
from equitybridge.domain.models.brokerage import Account
from equitybridge.domain.models.events import ChainEvent, make_event_id
from equitybridge.domain.models.results import EventResult, RunResult


def _event(kind=EventKind.MINT_REQUESTED, block=10, index=0) -> ChainEvent:
    return ChainEvent(
        kind=kind, symbol="AAPL", token_amount=10**18, block_number=block, log_index=index, transaction_hash="0xAB",
    )


class TestChainEvent:
    def test_event_id_is_lowercase_hash_and_index(self):
        assert _event(index=3).event_id == "0xab:3"
        assert make_event_id("0xAB", 3) == "0xab:3"

    def test_order_side(self):
        assert _event().order_side == OrderSide.BUY
        assert _event(kind=EventKind.REDEEM_REQUESTED).order_side == OrderSide.SELL

    def test_sort_key(self):
        events = [_event(block=2, index=0), _event(block=1, index=5), _event(block=1, index=2)]
        assert [e.sort_key for e in sorted(events, key=lambda e: e.sort_key)] == [(1, 2), (1, 5), (2, 0)]

    def test_enum_values(self):
        assert EventKind.MINT_REQUESTED.value == "MintRequested"
        assert EventKind.REDEEM_REQUESTED.value == "RedeemRequested"


class TestAccountEligibility:
    def test_active_account_trades(self):
        account = Account(id="a", buying_power=Decimal("100"))
        assert account.trading_allowed(OrderSide.BUY)
        assert account.trading_allowed(OrderSide.SELL)

    def test_trading_blocked(self):
        account = Account(id="a", buying_power=Decimal("100"), trading_blocked=True)
        assert not account.trading_allowed(OrderSide.SELL)

    def test_no_buying_power_blocks_buys_only(self):
        account = Account(id="a", buying_power=Decimal("0"))
        assert not account.trading_allowed(OrderSide.BUY)
        assert account.trading_allowed(OrderSide.SELL)


class TestStatus:
    def test_terminal_states(self):
        assert ProcessingStatus.SETTLED.is_terminal
        assert ProcessingStatus.FAILED.is_terminal
        assert not ProcessingStatus.ORDER_PLACED.is_terminal


class TestRunResult:
    def _result(self, kind, status, skipped=False) -> EventResult:
        return EventResult(
            event_id="0xab:0", kind=kind, symbol="AAPL", token_amount="1", block_number=1, log_index=0,
            transaction_hash="0xab", status=status, skipped=skipped,
        )

    def test_from_events_splits_buys_and_sells(self):
        results = [
            self._result(EventKind.MINT_REQUESTED, ProcessingStatus.SETTLED),
            self._result(EventKind.REDEEM_REQUESTED, ProcessingStatus.FAILED),
            self._result(EventKind.MINT_REQUESTED, ProcessingStatus.SETTLED, skipped=True),
        ]
        run = RunResult.from_events(results, 1, 10, 10)

        assert run.success
        assert len(run.processed.buys) == 2
        assert len(run.processed.sells) == 1
        assert (run.settled, run.failed, run.skipped) == (1, 1, 1)

    def test_already_running(self):
        run = RunResult.already_running()
        assert not run.success
        assert run.error == "already running"
