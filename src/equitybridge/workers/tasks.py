"""Celery tasks for background processing."""

import asyncio
import logging

from equitybridge.catalog.asset_catalog import CatalogCache
from equitybridge.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

# Outlives the per-task event loop so the asset listing is not re-fetched every tick.
_catalog_cache = CatalogCache()


@celery_app.task(name="process_events")
def process_events_task() -> dict:
    """Run one reconciliation cycle.

    Bridges to async code via asyncio.run(); each invocation builds its own
    container (engine, HTTP pools) bound to that loop.
    """
    return asyncio.run(_process_events_async())


async def _process_events_async() -> dict:
    from dependency_injector import providers

    from equitybridge.container import Container, close_clients

    container = Container()
    container.catalog_cache.override(providers.Object(_catalog_cache))
    try:
        result = await container.runner().run()
    finally:
        await close_clients(container)

    if result.success:
        logger.info("process_events: %s (%d settled, %d failed)", result.status.value, result.settled, result.failed)
    else:
        logger.warning("process_events: %s (%s)", result.status.value, result.error)
    return result.model_dump(mode="json")
