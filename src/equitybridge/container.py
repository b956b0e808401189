from dependency_injector import containers, providers

from equitybridge.catalog.asset_catalog import AssetCatalog, CatalogCache
from equitybridge.config import Settings
from equitybridge.db.session import build_engine, build_session_factory
from equitybridge.infra.blockchain.evm.rpc_client import EVMRPCClient
from equitybridge.infra.blockchain.evm.settlement_contract import SettlementContract
from equitybridge.infra.brokerage.alpaca_client import AlpacaClient
from equitybridge.infra.http.rate_limited_client import RateLimitedClient
from equitybridge.reconciliation.engine import EngineOptions
from equitybridge.reconciliation.lock import RunLock
from equitybridge.reconciliation.runner import ReconciliationRunner


class Container(containers.DeclarativeContainer):
    wiring_config = containers.WiringConfiguration(modules=["equitybridge.api.deps"])

    settings = providers.Singleton(Settings)

    engine = providers.Singleton(
        build_engine,
        database_url=settings.provided.database_url,
        echo=settings.provided.debug,
    )

    session_factory = providers.Singleton(
        build_session_factory,
        engine=engine,
    )

    brokerage_http = providers.Singleton(
        RateLimitedClient,
        rate_per_second=settings.provided.brokerage_rate_per_second,
        timeout=settings.provided.brokerage_timeout,
    )

    rpc_http = providers.Singleton(
        RateLimitedClient,
        rate_per_second=settings.provided.rpc_rate_per_second,
        timeout=settings.provided.rpc_timeout,
    )

    alpaca_client = providers.Singleton(
        AlpacaClient,
        api_key=settings.provided.alpaca_api_key,
        api_secret=settings.provided.alpaca_api_secret,
        http_client=brokerage_http,
        base_url=settings.provided.alpaca_base_url,
        max_attempts=settings.provided.max_attempts,
        backoff_seconds=settings.provided.retry_backoff_seconds,
    )

    rpc_client = providers.Singleton(
        EVMRPCClient,
        rpc_url=settings.provided.chain_rpc_url,
        http_client=rpc_http,
        max_attempts=settings.provided.max_attempts,
        backoff_seconds=settings.provided.retry_backoff_seconds,
    )

    settlement_contract = providers.Singleton(
        SettlementContract,
        rpc=rpc_client,
        contract_address=settings.provided.contract_address,
        private_key=settings.provided.operator_private_key,
        chain_id=settings.provided.chain_id,
    )

    catalog_cache = providers.Singleton(CatalogCache)

    asset_catalog = providers.Singleton(
        AssetCatalog,
        client=alpaca_client,
        supported_symbols=settings.provided.supported_symbols,
        refresh_seconds=settings.provided.catalog_refresh_seconds,
        cache=catalog_cache,
    )

    engine_options = providers.Singleton(EngineOptions.from_settings, settings=settings)

    run_lock = providers.Singleton(
        RunLock,
        session_factory=session_factory,
        ttl_seconds=settings.provided.lock_ttl_seconds,
    )

    runner = providers.Singleton(
        ReconciliationRunner,
        session_factory=session_factory,
        chain=settlement_contract,
        brokerage=alpaca_client,
        catalog=asset_catalog,
        lock=run_lock,
        options=engine_options,
    )


async def close_clients(container: Container) -> None:
    """Close the HTTP pools and the DB engine the container handed out."""
    await container.brokerage_http().close()
    await container.rpc_http().close()
    await container.engine().dispose()
