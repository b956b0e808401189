from typing import Optional

from pydantic import BaseModel


class LockStatus(BaseModel):
    held: bool = False
    owner: Optional[str] = None
    expires_at: Optional[float] = None


class WorkerStateResponse(BaseModel):
    last_processed_block: Optional[int] = None
    lock: LockStatus
