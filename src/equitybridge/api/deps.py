from typing import AsyncGenerator

from dependency_injector.wiring import Provide, inject
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from equitybridge.catalog.asset_catalog import AssetCatalog
from equitybridge.container import Container
from equitybridge.reconciliation.runner import ReconciliationRunner


@inject
async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(Provide[Container.session_factory]),
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@inject
def get_runner(
    runner: ReconciliationRunner = Depends(Provide[Container.runner]),
) -> ReconciliationRunner:
    return runner


@inject
def get_catalog(
    catalog: AssetCatalog = Depends(Provide[Container.asset_catalog]),
) -> AssetCatalog:
    return catalog
