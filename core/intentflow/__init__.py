"""
intentflow - executes dependency graphs of trading intents.

A parsed chat request becomes an IntentGraph; the IntentEngine validates it
and runs it with bounded concurrency, conditional skipping, retries and
partial-failure reporting.
"""

from intentflow.config import EngineConfig
from intentflow.errors import (
    ErrorKind,
    GraphValidationError,
    GraphValidationKind,
    IntentFlowError,
    OperationError,
)
from intentflow.graph import IntentGraph, IntentNode, NodeStatus, RetryPolicy
from intentflow.runner.handler_registry import OperationHandlerRegistry
from intentflow.runtime.aggregator import ExecutionResponse, OverallStatus
from intentflow.runtime.context import CancellationToken
from intentflow.runtime.engine import IntentEngine
from intentflow.runtime.progress import ProgressChannel, ProgressEvent

__all__ = [
    "IntentEngine",
    "EngineConfig",
    "IntentGraph",
    "IntentNode",
    "NodeStatus",
    "RetryPolicy",
    "OperationHandlerRegistry",
    "CancellationToken",
    "ProgressChannel",
    "ProgressEvent",
    "ExecutionResponse",
    "OverallStatus",
    "IntentFlowError",
    "GraphValidationError",
    "GraphValidationKind",
    "OperationError",
    "ErrorKind",
]
