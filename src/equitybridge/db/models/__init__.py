from equitybridge.db.models.processing_record import ProcessingRecord
from equitybridge.db.models.worker_state import WorkerState

__all__ = [
    "ProcessingRecord",
    "WorkerState",
]
