from equitybridge.db.repos.processing_record_repo import ProcessingRecordRepo
from equitybridge.db.repos.state_store import StateStore, WatermarkStore

__all__ = ["ProcessingRecordRepo", "StateStore", "WatermarkStore"]
