from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ProcessingRecordResponse(BaseModel):
    event_id: str
    kind: str
    symbol: str
    token_amount: str
    block_number: int
    log_index: int
    tx_hash: str
    status: str
    quantity: Optional[str] = None
    client_order_id: Optional[str] = None
    brokerage_order_id: Optional[str] = None
    settlement_tx_hash: Optional[str] = None
    settlement_nonce: Optional[int] = None
    attempts: int
    settlement_attempts: int
    last_error: Optional[str] = None
    error_type: Optional[str] = None
    resolved: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProcessingRecordList(BaseModel):
    records: list[ProcessingRecordResponse]
    total: int
    limit: int
    offset: int


class RecordSummaryResponse(BaseModel):
    total: int = 0
    by_status: dict[str, int] = {}
    unresolved_failures: int = 0
    consistency_gaps: int = 0
