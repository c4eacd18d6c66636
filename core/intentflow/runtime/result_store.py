"""
Result Store - write-once results for one execution context.

Each node writes exactly once, keyed by its unique ID, so there are no
read-modify-write races. The lock only guards the dict itself.
"""

import threading
from collections.abc import Iterator, Mapping, Sequence
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel

from intentflow.errors import ResultAlreadyWrittenError, UnresolvedReferenceError


def walk_path(value: Any, path: tuple, node_id: str) -> Any:
    """
    Follow a field path into a result payload.

    Mappings are indexed by key, sequences by integer, and anything else by
    attribute (pydantic models and dataclasses included).
    """
    current = value
    for depth, segment in enumerate(path):
        walked = path[: depth + 1]
        if isinstance(current, BaseModel):
            current = current.model_dump()
        if isinstance(current, Mapping):
            if segment in current:
                current = current[segment]
            elif str(segment) in current:
                current = current[str(segment)]
            else:
                raise UnresolvedReferenceError(node_id, walked, f"no key {segment!r}")
        elif isinstance(current, Sequence) and not isinstance(current, str | bytes):
            if not isinstance(segment, int):
                raise UnresolvedReferenceError(node_id, walked, "sequence index must be an integer")
            try:
                current = current[segment]
            except IndexError:
                raise UnresolvedReferenceError(
                    node_id, walked, f"index {segment} out of range"
                ) from None
        elif isinstance(segment, str) and not segment.startswith("_") and hasattr(current, segment):
            current = getattr(current, segment)
        else:
            raise UnresolvedReferenceError(
                node_id, walked, f"{type(current).__name__} has no field {segment!r}"
            )
    return current


class ResultStore:
    """
    Append-only map of node ID -> result payload.

    Example:
        store = ResultStore()
        store.put("quote", {"price": 1.25})
        store.lookup("quote", ("price",))  # 1.25
    """

    def __init__(self) -> None:
        self._results: dict[str, Any] = {}
        self._lock = threading.Lock()

    def put(self, node_id: str, result: Any) -> None:
        """
        Record a node's result.

        Raises:
            ResultAlreadyWrittenError: If node_id already has a result
        """
        with self._lock:
            if node_id in self._results:
                raise ResultAlreadyWrittenError(node_id)
            self._results[node_id] = result

    def get(self, node_id: str, default: Any = None) -> Any:
        with self._lock:
            return self._results.get(node_id, default)

    def lookup(self, node_id: str, path: tuple = ()) -> Any:
        """
        Resolve a reference into a stored result.

        Raises:
            UnresolvedReferenceError: If the node has no result or the path is missing
        """
        with self._lock:
            if node_id not in self._results:
                raise UnresolvedReferenceError(node_id, (), "node has no result")
            value = self._results[node_id]
        return walk_path(value, tuple(path), node_id)

    def snapshot(self) -> Mapping[str, Any]:
        """Read-only copy of every result written so far."""
        with self._lock:
            return MappingProxyType(dict(self._results))

    def __contains__(self, node_id: object) -> bool:
        with self._lock:
            return node_id in self._results

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self.snapshot()))
