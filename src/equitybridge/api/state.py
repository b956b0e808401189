import json
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from equitybridge.api.deps import get_db
from equitybridge.api.schemas.state import LockStatus, WorkerStateResponse
from equitybridge.db.repos.state_store import StateStore, WatermarkStore
from equitybridge.reconciliation.lock import LOCK_KEY

router = APIRouter(prefix="/api/state", tags=["state"])

DbDep = Annotated[AsyncSession, Depends(get_db)]


@router.get("", response_model=WorkerStateResponse)
async def get_state(db: DbDep) -> WorkerStateResponse:
    store = StateStore(db)
    watermark = await WatermarkStore(store).get()

    lock = LockStatus()
    entry = await store.get(LOCK_KEY)
    if entry is not None and entry.value:
        lease = json.loads(entry.value)
        lock = LockStatus(held=True, owner=lease.get("owner"), expires_at=lease.get("expires_at"))

    return WorkerStateResponse(last_processed_block=watermark, lock=lock)
