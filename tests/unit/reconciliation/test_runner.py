import asyncio
from unittest.mock import AsyncMock

import pytest

from equitybridge.catalog.asset_catalog import AssetCatalog
from equitybridge.domain.enums import RunStatus
from equitybridge.reconciliation.engine import EngineOptions
from equitybridge.reconciliation.lock import RunLock
from equitybridge.reconciliation.runner import ReconciliationRunner


@pytest.fixture()
def chain():
    mock = AsyncMock()
    mock.get_block_number.return_value = 200
    mock.get_all_events.return_value = []
    return mock


@pytest.fixture()
def brokerage():
    return AsyncMock()


@pytest.fixture()
def runner(session_factory, chain, brokerage):
    return ReconciliationRunner(
        session_factory,
        chain,
        brokerage,
        AssetCatalog(brokerage),
        RunLock(session_factory, ttl_seconds=60, owner="runner"),
        EngineOptions(backoff_seconds=0),
    )


class TestReconciliationRunner:
    async def test_runs_and_releases_lock(self, runner, session_factory, chain):
        result = await runner.run()

        assert result.success
        assert result.status == RunStatus.COMPLETED
        chain.get_all_events.assert_awaited_once_with(98, 197)
        assert await RunLock(session_factory, owner="other").acquire()

    async def test_overlapping_run_rejected(self, runner, session_factory, chain):
        assert await RunLock(session_factory, ttl_seconds=60, owner="other").acquire()

        result = await runner.run()

        assert not result.success
        assert result.status == RunStatus.ALREADY_RUNNING
        assert result.error == "already running"
        chain.get_block_number.assert_not_called()

    async def test_sequential_runs_both_execute(self, runner, chain):
        first = await runner.run()
        second = await runner.run()

        assert first.status == RunStatus.COMPLETED
        assert second.status == RunStatus.NO_NEW_BLOCKS

    async def test_crash_reported_not_raised(self, runner, session_factory, chain):
        chain.get_block_number.side_effect = RuntimeError("node client bug")

        result = await runner.run()

        assert not result.success
        assert result.status == RunStatus.ABORTED
        assert result.error == "node client bug"
        assert await RunLock(session_factory, owner="other").acquire()

    async def test_concurrent_runs_on_one_runner(self, runner, session_factory, chain):
        entered = asyncio.Event()
        proceed = asyncio.Event()

        async def block_number():
            entered.set()
            await proceed.wait()
            return 200

        chain.get_block_number.side_effect = block_number

        first = asyncio.create_task(runner.run())
        await entered.wait()
        second = await runner.run()
        proceed.set()
        first_result = await first

        assert second.status == RunStatus.ALREADY_RUNNING
        assert first_result.status == RunStatus.COMPLETED
        assert chain.get_block_number.await_count == 1
        chain.get_all_events.assert_awaited_once()
        assert await RunLock(session_factory, owner="other").acquire() is not None
