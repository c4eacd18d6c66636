"""
Response Aggregator - folds a finished execution context into the response.

The response is structured data only; rendering it for a chat platform is
the presentation layer's job.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from intentflow.graph.node import NodeError, NodeStatus
from intentflow.runtime.context import ExecutionContext


class OverallStatus(StrEnum):
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


class NodeOutcome(BaseModel):
    """Final state of one node as reported to the caller."""

    id: str
    type: str
    status: NodeStatus
    result: Any | None = None
    error: NodeError | None = None
    attempts: int = 0
    skip_reason: str | None = None
    excluded: bool = False


class ExecutionResponse(BaseModel):
    """Aggregated outcome of one request."""

    request_id: str
    overall_status: OverallStatus
    nodes: list[NodeOutcome] = Field(default_factory=list)
    started_at: datetime
    ended_at: datetime | None = None
    cancelled: bool = False
    timed_out: bool = False

    def get_node(self, node_id: str) -> NodeOutcome | None:
        for outcome in self.nodes:
            if outcome.id == node_id:
                return outcome
        return None

    def errors(self) -> list[NodeOutcome]:
        """Outcomes that carry an error."""
        return [outcome for outcome in self.nodes if outcome.error is not None]

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe dictionary; results are passed through as-is."""
        return self.model_dump(mode="json")


def overall_status(statuses: list[NodeStatus]) -> OverallStatus:
    """completed when every node succeeded, failed when none did."""
    succeeded = sum(1 for status in statuses if status == NodeStatus.SUCCEEDED)
    if succeeded == len(statuses):
        return OverallStatus.COMPLETED
    if succeeded == 0:
        return OverallStatus.FAILED
    return OverallStatus.PARTIAL_FAILURE


class ResponseAggregator:
    """Builds an ExecutionResponse from a context, in topological order."""

    def build(self, ctx: ExecutionContext) -> ExecutionResponse:
        outcomes = []
        for node in ctx.ordered_nodes():
            excluded = node.id in ctx.excluded
            outcomes.append(
                NodeOutcome(
                    id=node.id,
                    type=node.type,
                    status=node.status,
                    result=None if excluded or node.status != NodeStatus.SUCCEEDED else node.result,
                    error=None if excluded else node.error,
                    attempts=node.attempts,
                    skip_reason=node.skip_reason,
                    excluded=excluded,
                )
            )
        return ExecutionResponse(
            request_id=ctx.id,
            overall_status=overall_status([o.status for o in outcomes]),
            nodes=outcomes,
            started_at=ctx.started_at,
            ended_at=ctx.ended_at or datetime.now(),
            cancelled=ctx.cancelled,
            timed_out=ctx.timed_out,
        )
