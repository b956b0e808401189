from enum import Enum


class ProcessingStatus(str, Enum):
    """Per-event pipeline state. SETTLED and FAILED are absorbing."""

    PENDING = "PENDING"
    ORDER_PENDING = "ORDER_PENDING"
    ORDER_PLACED = "ORDER_PLACED"
    SETTLEMENT_PENDING = "SETTLEMENT_PENDING"
    SETTLED = "SETTLED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.SETTLED, ProcessingStatus.FAILED)


class RunStatus(str, Enum):
    """Outcome of one reconciliation run."""

    COMPLETED = "completed"
    NO_NEW_BLOCKS = "no_new_blocks"
    ALREADY_RUNNING = "already_running"
    ABORTED = "aborted"
