"""
Context Manager

Manages the mutable state threaded through a workflow run:
- ContextManager: the key/value context every step reads and mutates
- RunState: context plus the run-scoped fields the engine carries
  between steps (last API response, format type, execution logger)

The context's shape is not known statically; field names come from
user-configured extraction schemas, so it stays a plain ordered dict.
"""

import copy
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, TYPE_CHECKING

from .templates import set_value_by_path

if TYPE_CHECKING:
    from .execution_log import ExecutionLogger
    from .nodes import StepNode


class ContextManager:
    """
    Centralized context for one workflow run.

    Example:
        >>> context = ContextManager({"orderId": "A1"})
        >>> context.set("status", "approved")
        >>> context.get("status")
        'approved'
        >>> context.update({"carrier": "ACME"})
        >>> sorted(context.get_all())
        ['carrier', 'orderId', 'status']
    """

    def __init__(self, initial_context: Optional[Dict[str, Any]] = None):
        self._context: Dict[str, Any] = initial_context.copy() if initial_context else {}

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a single value from the context.

        Nested objects are returned by reference, so steps may mutate
        them in place (e.g. context.get("extractedData")[name] = value).
        """
        return self._context.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a single value in the context."""
        self._context[key] = value

    def update(self, data: Dict[str, Any]) -> None:
        """Merge multiple values into the context (later keys win)."""
        self._context.update(data)

    def get_all(self) -> Dict[str, Any]:
        """
        Get the complete context as a dictionary.

        Returns a shallow copy. For an immutable record (step logs),
        use snapshot() instead.
        """
        return self._context.copy()

    def set_path(self, path: str, value: Any) -> Optional[str]:
        """
        Write value at a dotted/bracket path, creating objects on the way.

        Returns:
            The last path segment, or None for an empty path
        """
        return set_value_by_path(self._context, path, value)

    def view(self) -> Mapping[str, Any]:
        """Read-only live view, used for template and path resolution."""
        return MappingProxyType(self._context)

    def snapshot(self) -> Dict[str, Any]:
        """
        Create a deep copy of the current context.

        Used when persisting context to the execution log, so later
        mutations do not leak into saved records.
        """
        return copy.deepcopy(self._context)

    def has(self, key: str) -> bool:
        """Check if a key exists in the context."""
        return key in self._context

    def delete(self, key: str) -> bool:
        """
        Delete a key from the context.

        Returns:
            True if key was deleted, False if key didn't exist
        """
        if key in self._context:
            del self._context[key]
            return True
        return False

    def size(self) -> int:
        """Number of top-level keys."""
        return len(self._context)

    def extracted_data(self, create: bool = False) -> Optional[Dict[str, Any]]:
        """
        The "extractedData" object, if it is a dict.

        Args:
            create: Replace a missing or non-object value with an empty dict
        """
        value = self._context.get("extractedData")
        if isinstance(value, dict):
            return value
        if create:
            value = {}
            self._context["extractedData"] = value
            return value
        return None

    def __repr__(self) -> str:
        return f"<ContextManager(keys={list(self._context.keys())}, size={self.size()})>"


def utc_now() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class RunState:
    """
    Mutable state of one traversal.

    Attributes:
        context: The shared context
        workflow_id: Workflow being run
        format_type: JSON, CSV or XML; drives filenames and payload serialization
        last_api_response: Whatever the most recent api_call / api_endpoint /
            ai_decision step produced
        execution_logger: Log sink for this run (None disables step logs)
        visited_node_ids: Node ids in visit order
    """
    context: ContextManager
    workflow_id: Optional[int] = None
    format_type: str = "JSON"
    last_api_response: Any = None
    execution_logger: Optional["ExecutionLogger"] = None
    visited_node_ids: List[str] = field(default_factory=list)

    def log_substep(
        self,
        node: "StepNode",
        suffix: str,
        status: str,
        started_at: datetime,
        started_monotonic: float,
        input_data: Any,
        output_data: Any,
        error_message: Optional[str] = None,
    ) -> Optional[int]:
        """
        Write a sub-step log entry labelled "<node label> - <suffix>".

        Used by steps that log their own phases instead of a single entry.
        """
        if self.execution_logger is None:
            return None
        duration_ms = int((time.monotonic() - started_monotonic) * 1000)
        return self.execution_logger.record_substep(
            node=node,
            label=f"{node.label} - {suffix}",
            status=status,
            started_at=started_at,
            completed_at=utc_now(),
            duration_ms=duration_ms,
            error_message=error_message,
            input_data=input_data,
            output_data=output_data,
        )
