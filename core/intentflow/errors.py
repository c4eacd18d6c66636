"""
Error taxonomy for the intent execution engine.

Only two things ever reach the caller of the engine:
- GraphValidationError, raised before any node executes
- the aggregated response, which carries per-node failures

Everything else (operation errors, condition warnings, timeouts,
cancellation) is handled inside the scheduler and reported as node state.
"""

from enum import StrEnum


class IntentFlowError(Exception):
    """Base class for all intentflow errors."""


class GraphValidationKind(StrEnum):
    """Why a draft graph was rejected."""

    DUPLICATE_NODE_ID = "DuplicateNodeId"
    DANGLING_REFERENCE = "DanglingReference"
    CYCLE_DETECTED = "CycleDetected"
    GRAPH_TOO_LARGE = "GraphTooLarge"
    INVALID_EXPRESSION = "InvalidExpression"
    UNDECLARED_REFERENCE = "UndeclaredReference"
    INVALID_GRAPH = "InvalidGraph"


class GraphValidationError(IntentFlowError):
    """A draft graph cannot be executed."""

    def __init__(self, kind: GraphValidationKind, message: str, node_ids: list[str] | None = None):
        self.kind = kind
        self.message = message
        self.node_ids = list(node_ids or [])
        super().__init__(f"{kind}: {message}")

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message, "node_ids": self.node_ids}


class ExpressionError(IntentFlowError):
    """An expression uses syntax outside the whitelisted grammar."""


class ConditionEvaluationWarning(Warning):
    """A condition could not be evaluated cleanly; it is treated as false."""


class ErrorKind(StrEnum):
    """Classification of an operation failure."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    VALIDATION = "validation"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    UNSUPPORTED_INTENT_TYPE = "unsupported_intent_type"
    PARAMETER_RESOLUTION = "parameter_resolution"
    CANCELLED = "cancelled"
    HANDLER_ERROR = "handler_error"


# Kinds that are worth retrying unless a handler says otherwise
RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.NETWORK,
        ErrorKind.TIMEOUT,
        ErrorKind.RATE_LIMITED,
        ErrorKind.UPSTREAM_UNAVAILABLE,
    }
)

# Kinds that are never retried, whatever the policy says
NEVER_RETRY_KINDS = frozenset(
    {
        ErrorKind.VALIDATION,
        ErrorKind.INSUFFICIENT_FUNDS,
        ErrorKind.UNSUPPORTED_INTENT_TYPE,
        ErrorKind.PARAMETER_RESOLUTION,
        ErrorKind.CANCELLED,
    }
)


class OperationError(IntentFlowError):
    """
    Failure reported by (or on behalf of) an operation handler.

    Args:
        kind: Failure classification
        message: Human-oriented detail, never shown to end users as-is
        retryable: Override for the kind's default retryability
    """

    def __init__(self, kind: ErrorKind | str, message: str, retryable: bool | None = None):
        self.kind = ErrorKind(kind)
        self.message = message
        if retryable is None:
            retryable = self.kind in RETRYABLE_KINDS
        self.retryable = retryable and self.kind not in NEVER_RETRY_KINDS
        super().__init__(f"{self.kind}: {message}")


class ResultAlreadyWrittenError(IntentFlowError):
    """A second write was attempted for a node that already has a result."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Result for node '{node_id}' was already written")


class UnresolvedReferenceError(IntentFlowError):
    """A reference path does not exist in the referenced node's result."""

    def __init__(self, node_id: str, path: tuple, reason: str):
        self.node_id = node_id
        self.path = path
        self.reason = reason
        dotted = ".".join(str(p) for p in (node_id, *path))
        super().__init__(f"Cannot resolve '{dotted}': {reason}")
