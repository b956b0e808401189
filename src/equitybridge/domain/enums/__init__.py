from equitybridge.domain.enums.brokerage import OrderSide, OrderType, TimeInForce
from equitybridge.domain.enums.event import EventKind
from equitybridge.domain.enums.status import ProcessingStatus, RunStatus

__all__ = [
    "EventKind",
    "OrderSide",
    "OrderType",
    "ProcessingStatus",
    "RunStatus",
    "TimeInForce",
]
