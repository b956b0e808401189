from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from equitybridge.api.deps import get_db
from equitybridge.api.schemas.records import ProcessingRecordList, ProcessingRecordResponse, RecordSummaryResponse
from equitybridge.db.repos.processing_record_repo import ProcessingRecordRepo
from equitybridge.domain.enums import EventKind, ProcessingStatus

router = APIRouter(prefix="/api/records", tags=["records"])

DbDep = Annotated[AsyncSession, Depends(get_db)]


@router.get("", response_model=ProcessingRecordList)
async def list_records(
    db: DbDep,
    status: Optional[ProcessingStatus] = Query(None),
    error_type: Optional[str] = Query(None),
    kind: Optional[EventKind] = Query(None),
    resolved: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> ProcessingRecordList:
    repo = ProcessingRecordRepo(db)
    rows, total = await repo.list_records(
        status=status.value if status else None,
        error_type=error_type,
        kind=kind.value if kind else None,
        resolved=resolved,
        limit=limit,
        offset=offset,
    )
    return ProcessingRecordList(
        records=[ProcessingRecordResponse.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/summary", response_model=RecordSummaryResponse)
async def record_summary(db: DbDep) -> RecordSummaryResponse:
    repo = ProcessingRecordRepo(db)
    return RecordSummaryResponse(**await repo.get_summary())


@router.get("/{event_id}", response_model=ProcessingRecordResponse)
async def get_record(event_id: str, db: DbDep) -> ProcessingRecordResponse:
    record = await ProcessingRecordRepo(db).get(event_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return ProcessingRecordResponse.model_validate(record)


@router.post("/{event_id}/resolve", response_model=ProcessingRecordResponse)
async def resolve_record(event_id: str, db: DbDep) -> ProcessingRecordResponse:
    """Acknowledge a failed record after manual follow-up. Status is left untouched."""
    repo = ProcessingRecordRepo(db)
    record = await repo.get(event_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    if record.status != ProcessingStatus.FAILED.value:
        raise HTTPException(status_code=400, detail=f"Only FAILED records can be resolved (is {record.status})")

    await repo.mark_resolved(event_id)
    await db.commit()
    await db.refresh(record)
    return ProcessingRecordResponse.model_validate(record)
