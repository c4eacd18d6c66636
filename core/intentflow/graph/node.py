"""
Intent nodes - one requested operation plus its dependency metadata.

Nodes are produced by the upstream analyzer (or a plan template), validated
by the DependencyGraphBuilder and driven through their lifecycle by the
IntentExecutor:

    pending -> ready -> running -> succeeded | failed | skipped
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

from intentflow.graph.condition import Condition


class NodeStatus(StrEnum):
    """Lifecycle status of an intent node."""

    PENDING = "pending"
    READY = "ready"  # Dependencies done, waiting for a worker slot
    RUNNING = "running"  # Handler in flight (or backing off between attempts)
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    def is_terminal(self) -> bool:
        """Check if this status represents a terminal (finished) state."""
        return self in (NodeStatus.SUCCEEDED, NodeStatus.FAILED, NodeStatus.SKIPPED)

    def unblocks_dependents(self) -> bool:
        """Dependents may become ready once all their dependencies reach one of these."""
        return self in (NodeStatus.SUCCEEDED, NodeStatus.SKIPPED)


class IntentType(StrEnum):
    """Operation kinds known to the chat-trading front end.

    Node types are plain strings so that the registry decides what is
    supported; these are the well-known values.
    """

    TOKEN_TRADE = "token_trade"
    PRICE_ALERT = "price_alert"
    SENTIMENT_CHECK = "sentiment_check"
    PORTFOLIO_VIEW = "portfolio_view"
    TRANSFER = "transfer"
    MULTI_TARGET_ORDER = "multi_target_order"
    REMINDER = "reminder"


class NodeError(BaseModel):
    """Terminal failure recorded on a node."""

    kind: str
    message: str
    retryable: bool = False
    attempts: int = 0


class IntentNode(BaseModel):
    """
    A single intent in a dependency graph.

    Example:
        IntentNode(
            id="trade",
            type=IntentType.TOKEN_TRADE,
            parameters={"symbol": "SOL", "amount": "{{ portfolio.usdc * 0.1 }}"},
            depends_on=["portfolio", "sentiment"],
            condition="sentiment.label == 'bullish'",
        )
    """

    id: str = Field(min_length=1)
    type: str = Field(min_length=1, description="Operation kind, resolved by the handler registry")
    parameters: dict[str, Any] = Field(
        default_factory=dict,
        description="Handler parameters; strings may embed {{ reference }} templates",
    )
    depends_on: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("depends_on", "dependsOn", "dependencies"),
        description="IDs of nodes that must finish before this one",
    )
    condition: Condition | None = None
    description: str = ""

    # Execution state
    status: NodeStatus = NodeStatus.PENDING
    result: Any | None = None
    error: NodeError | None = None
    attempts: int = 0
    skip_reason: str | None = None

    # Metadata
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"extra": "allow", "populate_by_name": True}

    @field_validator("depends_on")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    def is_ready(self, statuses: dict[str, NodeStatus]) -> bool:
        """Check if this node can leave PENDING.

        Args:
            statuses: Current status of every node in the graph
        """
        if self.status != NodeStatus.PENDING:
            return False
        return all(statuses[dep].unblocks_dependents() for dep in self.depends_on)
