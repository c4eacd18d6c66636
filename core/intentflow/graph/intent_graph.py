"""
IntentGraph - the draft plan for one user request.

The upstream analyzer produces this structure; the DependencyGraphBuilder
turns it into a ValidatedGraph. The graph is a forest: several independent
roots are allowed and run concurrently.
"""

import json
from typing import Any

from pydantic import BaseModel, Field

from intentflow.graph.node import IntentNode


class IntentGraph(BaseModel):
    """
    Draft dependency graph of intents.

    Example:
        IntentGraph(
            nodes=[
                IntentNode(id="sentiment", type="sentiment_check",
                           parameters={"symbol": "SOL"}),
                IntentNode(id="trade", type="token_trade",
                           parameters={"symbol": "SOL", "amount": 10},
                           depends_on=["sentiment"],
                           condition="sentiment.label == 'bullish'"),
            ]
        )
    """

    id: str = "intent-graph"
    description: str = ""
    nodes: list[IntentNode] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    @classmethod
    def from_json(cls, data: str | dict) -> "IntentGraph":
        """
        Load a graph from analyzer output.

        Accepts a JSON string or dict, optionally nested under a "graph"
        or "plan" key. Steps may use "intents" instead of "nodes".

        Example:
            with open("graph.json") as f:
                graph = IntentGraph.from_json(json.load(f))
        """
        if isinstance(data, str):
            data = json.loads(data)

        for key in ("graph", "plan"):
            if key in data and isinstance(data[key], dict):
                data = data[key]

        if "nodes" not in data and "intents" in data:
            data = {**data, "nodes": data["intents"]}
            data.pop("intents")

        return cls.model_validate(data)

    def get_node(self, node_id: str) -> IntentNode | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_ids(self) -> list[str]:
        """Node IDs in declaration order."""
        return [node.id for node in self.nodes]

    def to_dict(self) -> dict[str, Any]:
        """Serialize the draft (definition fields only)."""
        return self.model_dump(
            mode="json",
            include={"id", "description", "nodes"},
            exclude={
                "nodes": {
                    "__all__": {
                        "status",
                        "result",
                        "error",
                        "attempts",
                        "skip_reason",
                        "started_at",
                        "completed_at",
                    }
                }
            },
            exclude_none=True,
        )
