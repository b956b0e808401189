from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from eth_abi import encode
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from equitybridge.api.deps import get_catalog, get_db, get_runner
from equitybridge.api.main import app
from equitybridge.catalog.asset_catalog import AssetCatalog
from equitybridge.db.session import Base
from equitybridge.domain.enums import EventKind, OrderSide
from equitybridge.domain.models.brokerage import Account, Asset, Order
from equitybridge.exceptions import TransientBrokerageError
from equitybridge.infra.blockchain.abi import event_topic
from equitybridge.infra.blockchain.evm.settlement_contract import SettlementContract
from equitybridge.reconciliation.engine import EngineOptions
from equitybridge.reconciliation.lock import RunLock
from equitybridge.reconciliation.runner import ReconciliationRunner
import equitybridge.db.models  # noqa: F401

PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
CONTRACT = "0x8B0EF8eD5D6F3ceF0803c26Ea7471ba83CB6cB80"
TX_HASH = "0x" + "ab" * 32


def _mint_log(symbol: str, amount: int, block: int, index: int) -> dict:
    return {
        "address": CONTRACT,
        "data": "0x" + encode(["string", "uint256", "uint256"], [symbol, amount, 0]).hex(),
        "blockNumber": hex(block),
        "logIndex": hex(index),
        "transactionHash": TX_HASH,
        "removed": False,
    }


@pytest.fixture()
def rpc():
    mock = AsyncMock()
    mock.block_number.return_value = 200
    mint_topic = event_topic(EventKind.MINT_REQUESTED)

    async def get_logs(address, topics, from_block, to_block):
        if topics == [mint_topic]:
            return [_mint_log("AAPL", 2 * 10**18, 150, 0), _mint_log("ZZZZ", 10**18, 151, 1)]
        return []

    mock.get_logs.side_effect = get_logs
    mock.call.return_value = "0x"
    mock.estimate_gas.return_value = 60_000
    mock.gas_price.return_value = 1_000_000_000
    mock.get_transaction_count.return_value = 0
    mock.send_raw_transaction.return_value = "0x"
    return mock


@pytest.fixture()
def brokerage():
    mock = AsyncMock()
    mock.get_assets.return_value = [Asset(id="a1", symbol="AAPL", tradable=True, fractionable=True)]
    mock.get_account.return_value = Account(id="acct-1", buying_power=Decimal("5000"))
    mock.get_order_by_client_order_id.return_value = None
    mock.place_market_order.return_value = Order(id="ord-1", symbol="AAPL", side=OrderSide.BUY, status="accepted")
    mock.get_order.return_value = Order(id="ord-1", symbol="AAPL", side=OrderSide.BUY, status="filled")
    return mock


@pytest.fixture()
async def client(rpc, brokerage):
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    catalog = AssetCatalog(brokerage)
    runner = ReconciliationRunner(
        factory,
        SettlementContract(rpc, CONTRACT, PRIVATE_KEY, chain_id=84532),
        brokerage,
        catalog,
        RunLock(factory, ttl_seconds=60),
        EngineOptions(backoff_seconds=0, backoff_max_seconds=0),
    )

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_runner] = lambda: runner
    app.dependency_overrides[get_catalog] = lambda: catalog
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


class TestProcessEventsAPI:
    async def test_root_health_check(self, client):
        res = await client.get("/")
        assert res.status_code == 200
        assert res.text == "OK"

    async def test_health_endpoint(self, client):
        res = await client.get("/api/health")
        assert res.status_code == 200
        assert res.json()["status"] == "ok"

    async def test_process_events(self, client, brokerage, rpc):
        res = await client.post("/process-events")

        assert res.status_code == 200
        data = res.json()
        assert data["success"] is True
        assert data["to_block"] == 197
        buys = data["processed"]["buys"]
        assert [b["symbol"] for b in buys] == ["AAPL", "ZZZZ"]
        assert buys[0]["status"] == "SETTLED"
        assert buys[0]["quantity"] == "2"
        assert buys[1]["status"] == "FAILED"
        assert buys[1]["error_type"] == "ValidationError"
        assert data["processed"]["sells"] == []
        brokerage.place_market_order.assert_awaited_once()
        rpc.send_raw_transaction.assert_awaited_once()

    async def test_second_trigger_has_nothing_new(self, client, brokerage):
        await client.post("/process-events")
        res = await client.post("/process-events")

        assert res.status_code == 200
        assert res.json()["status"] == "no_new_blocks"
        brokerage.place_market_order.assert_awaited_once()

    async def test_failure_still_returns_200(self, client, brokerage):
        brokerage.get_assets.side_effect = TransientBrokerageError("Server error: down", status_code=503)

        res = await client.post("/process-events")

        assert res.status_code == 200
        data = res.json()
        assert data["success"] is False
        assert "Server error" in data["error"]

    async def test_records_visible_after_run(self, client):
        await client.post("/process-events")

        res = await client.get("/api/records")
        assert res.status_code == 200
        data = res.json()
        assert data["total"] == 2

        res = await client.get("/api/records/summary")
        summary = res.json()
        assert summary["by_status"] == {"SETTLED": 1, "FAILED": 1}
        assert summary["unresolved_failures"] == 1
        assert summary["consistency_gaps"] == 0

        res = await client.get("/api/state")
        state = res.json()
        assert state["last_processed_block"] == 197
        assert state["lock"]["held"] is False

    async def test_supported_assets(self, client):
        res = await client.get("/api/assets/supported")

        assert res.status_code == 200
        data = res.json()
        assert [a["symbol"] for a in data["assets"]] == ["AAPL"]
        assert data["supported_symbols"] == ["AAPL", "MSFT", "TSLA"]

    async def test_supported_assets_unavailable(self, client, brokerage):
        brokerage.get_assets.side_effect = TransientBrokerageError("Server error: down", status_code=503)

        res = await client.get("/api/assets/supported")
        assert res.status_code == 503
