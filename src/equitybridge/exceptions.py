"""Error taxonomy shared by the clients and the reconciliation engine.

Clients translate raw HTTP / JSON-RPC failures into these types at their
boundary; the engine only ever branches on them.
"""

from typing import Any


class ReconciliationError(Exception):
    """Base class. ``error_type`` is what gets stored on a ProcessingRecord."""

    error_type = "ReconciliationError"


class ValidationError(ReconciliationError):
    """Bad symbol, amount or order parameters. Never retried."""

    error_type = "ValidationError"


class DependencyError(ReconciliationError):
    """A call to the brokerage or the chain node failed."""

    error_type = "DependencyError"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.data = data
        # The remote side answered (HTTP/JSON-RPC error body) rather than the
        # request getting lost in transport.
        self.response_received = False
        # Set when a node answered a broadcast with an error, i.e. the signed
        # transaction is known not to have entered the mempool.
        self.broadcast_rejected = False


class TransientDependencyError(DependencyError):
    """Timeouts, 429, 5xx, node connectivity. Retry with backoff."""

    error_type = "TransientDependencyError"


class TerminalDependencyError(DependencyError):
    """Authorization / business-rule rejection or contract revert. Do not retry."""

    error_type = "TerminalDependencyError"


class BrokerageAPIError(DependencyError):
    """Mixin marker for errors raised by the brokerage client."""


class TransientBrokerageError(BrokerageAPIError, TransientDependencyError):
    error_type = "TransientDependencyError"


class TerminalBrokerageError(BrokerageAPIError, TerminalDependencyError):
    error_type = "TerminalDependencyError"


class NotFoundError(TerminalBrokerageError):
    """Brokerage 404. Lookups map it to ``None``."""


class ContractRevertError(TerminalDependencyError):
    """The contract rejected the call (e.g. unknown symbol)."""


class NonceError(TransientDependencyError):
    """Nonce too low / replacement underpriced. Retry after a nonce refresh."""


class ConsistencyGapError(ReconciliationError):
    """The brokerage order executed but the on-chain settlement failed terminally.

    Brokerage and chain state now diverge and need manual intervention.
    """

    error_type = "ConsistencyGapError"


class AlreadyRunningError(ReconciliationError):
    """Another reconciliation run holds the single-flight lock."""

    error_type = "AlreadyRunningError"


class LeaseLostError(ReconciliationError):
    """The run lease expired and was taken over, or could not be renewed."""

    error_type = "LeaseLostError"
