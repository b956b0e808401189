"""Entry point shared by the HTTP trigger, the Celery beat task and scripts."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from equitybridge.catalog.asset_catalog import AssetCatalog
from equitybridge.domain.enums import RunStatus
from equitybridge.domain.models.results import RunResult
from equitybridge.exceptions import AlreadyRunningError
from equitybridge.infra.blockchain.evm.settlement_contract import SettlementContract
from equitybridge.infra.brokerage.alpaca_client import AlpacaClient
from equitybridge.reconciliation.engine import EngineOptions, ReconciliationEngine
from equitybridge.reconciliation.lock import RunLock

logger = logging.getLogger(__name__)


class ReconciliationRunner:
    """Runs one reconciliation cycle under the single-flight lock.

    Never raises: every outcome, including crashes, comes back as a RunResult.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        chain: SettlementContract,
        brokerage: AlpacaClient,
        catalog: AssetCatalog,
        lock: RunLock,
        options: EngineOptions | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._chain = chain
        self._brokerage = brokerage
        self._catalog = catalog
        self._lock = lock
        self._options = options or EngineOptions()

    async def run(self) -> RunResult:
        try:
            async with self._lock.hold() as lease:
                async with self._session_factory() as session:
                    engine = ReconciliationEngine(
                        session, self._chain, self._brokerage, self._catalog, self._options, lease=lease
                    )
                    return await engine.run()
        except AlreadyRunningError:
            logger.info("Skipping reconciliation: another run is in progress")
            return RunResult.already_running()
        except Exception as e:
            logger.exception("Reconciliation run crashed")
            return RunResult(success=False, status=RunStatus.ABORTED, error=str(e))
