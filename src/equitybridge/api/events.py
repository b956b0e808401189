"""Manual trigger for one reconciliation run (same path the scheduler takes)."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from equitybridge.api.deps import get_runner
from equitybridge.reconciliation.runner import ReconciliationRunner

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])

RunnerDep = Annotated[ReconciliationRunner, Depends(get_runner)]


@router.post("/process-events")
async def process_events(runner: RunnerDep) -> dict:
    """Always 200; the outcome is in ``success`` / ``error``."""
    result = await runner.run()
    if not result.success:
        logger.warning("Triggered run did not complete: %s", result.error)
    return result.model_dump(mode="json")
