"""
Execution / Step Logger

Persists the audit trail of a workflow run:
- ExecutionLog: one row per run (status, current node, running context)
- StepLog: one row per node visit (or per phase, for steps that log their own)

Every write goes through log_best_effort(): a failed write is logged as a
warning and rolled back, never raised. Log writes must not change the
outcome of a run.
"""

import base64
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .context import utc_now
from .nodes import NodeType, StepNode
from ..models.execution import ExecutionLog, StepLog

logger = logging.getLogger(__name__)

T = TypeVar("T")


def make_json_serializable(obj):
    """
    Recursively convert non-JSON-serializable objects to serializable format.

    Handles:
    - datetime → ISO 8601 string
    - bytes → base64 string (for binary data)
    - sets/tuples → lists
    - custom objects → str(obj)
    """
    if isinstance(obj, dict):
        return {str(k): make_json_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple, set)):
        return [make_json_serializable(item) for item in obj]
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, bytes):
        return base64.b64encode(obj).decode("ascii")
    elif obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    else:
        return str(obj)


def log_best_effort(session: Optional[Session], operation: str, fn: Callable[[], T]) -> Optional[T]:
    """
    Run a log write, discarding its failure.

    Args:
        session: Session to roll back if the write fails
        operation: Short description for the warning line
        fn: The write; its return value is passed through

    Returns:
        fn's result, or None if it raised
    """
    try:
        return fn()
    except (SQLAlchemyError, TypeError, ValueError) as e:
        logger.warning(f"Log write failed ({operation}): {e}")
        if session is not None:
            try:
                session.rollback()
            except SQLAlchemyError as rollback_error:
                logger.warning(f"Rollback after failed log write also failed: {rollback_error}")
        return None


class ExecutionLogger:
    """
    Log sink for one workflow run.

    Example:
        >>> execution_logger = ExecutionLogger(session, workflow_id=7, mode="extraction")
        >>> execution_logger.start({"orderId": "A1"})
        >>> execution_logger.record_step(node, "completed", started_at, 12, {...}, {...})
        >>> execution_logger.complete({"orderId": "A1", "status": "done"})
    """

    def __init__(
        self,
        session: Session,
        workflow_id: Optional[int],
        mode: str = "extraction",
        user_id: Optional[str] = None,
        extraction_log_id: Optional[int] = None,
        extraction_type_id: Optional[int] = None,
        transformation_type_id: Optional[int] = None,
    ):
        self.session = session
        self.workflow_id = workflow_id
        self.mode = mode
        self.user_id = user_id
        self.extraction_log_id = extraction_log_id
        self.extraction_type_id = extraction_type_id
        self.transformation_type_id = transformation_type_id
        self.execution_log_id: Optional[int] = None

    # ========================================================================
    # EXECUTION LOG
    # ========================================================================

    def start(self, context: Optional[Dict[str, Any]] = None) -> Optional[int]:
        """Create the ExecutionLog row with status running."""

        def write() -> int:
            execution_log = ExecutionLog(
                workflow_id=self.workflow_id,
                extraction_log_id=self.extraction_log_id,
                status="running",
                processing_mode=self.mode,
                context_data=make_json_serializable(context or {}),
                user_id=self.user_id,
                extraction_type_id=self.extraction_type_id,
                transformation_type_id=self.transformation_type_id,
                started_at=utc_now(),
            )
            self.session.add(execution_log)
            self.session.commit()
            return execution_log.id

        self.execution_log_id = log_best_effort(self.session, "create execution log", write)
        if self.execution_log_id:
            logger.info(f"Created ExecutionLog {self.execution_log_id} for workflow {self.workflow_id}")
        return self.execution_log_id

    def _update(self, operation: str, **fields: Any) -> None:
        if not self.execution_log_id:
            return

        def write() -> None:
            execution_log = self.session.get(ExecutionLog, self.execution_log_id)
            if execution_log is None:
                raise ValueError(f"ExecutionLog {self.execution_log_id} not found")
            for key, value in fields.items():
                setattr(execution_log, key, value)
            self.session.commit()

        log_best_effort(self.session, operation, write)

    def update_progress(self, node: NodeType, context: Dict[str, Any]) -> None:
        """Record the node about to execute and the context it will see."""
        self._update(
            "update execution progress",
            current_node_id=node.id,
            current_node_label=node.label,
            context_data=make_json_serializable(context),
        )

    def complete(self, context: Dict[str, Any]) -> None:
        self._update(
            "complete execution log",
            status="completed",
            context_data=make_json_serializable(context),
            completed_at=utc_now(),
        )

    def fail(self, error_message: str, context: Optional[Dict[str, Any]] = None) -> None:
        fields: Dict[str, Any] = {
            "status": "failed",
            "error_message": error_message,
            "completed_at": utc_now(),
        }
        if context is not None:
            fields["context_data"] = make_json_serializable(context)
        self._update("fail execution log", **fields)

    # ========================================================================
    # STEP LOGS
    # ========================================================================

    def _create_step_log(
        self,
        node: NodeType,
        label: str,
        status: str,
        started_at: Optional[datetime],
        completed_at: Optional[datetime],
        duration_ms: Optional[int],
        input_data: Any,
        output_data: Any,
        error_message: Optional[str],
        user_response: Optional[str],
    ) -> Optional[int]:
        if not self.execution_log_id:
            return None

        step_type = node.step_type if isinstance(node, StepNode) else node.node_type
        config = node.config_json if isinstance(node, StepNode) else None

        def write() -> int:
            step_log = StepLog(
                execution_log_id=self.execution_log_id,
                workflow_id=self.workflow_id,
                node_id=node.id,
                node_label=label,
                step_type=step_type,
                status=status,
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=duration_ms,
                error_message=error_message,
                input_data=make_json_serializable(input_data),
                output_data=make_json_serializable(output_data),
                config_json=make_json_serializable(config),
                user_response=user_response,
            )
            self.session.add(step_log)
            self.session.commit()
            return step_log.id

        return log_best_effort(self.session, f"create step log for node {node.id}", write)

    def record_step(
        self,
        node: NodeType,
        status: str,
        started_at: Optional[datetime],
        duration_ms: Optional[int],
        input_data: Any,
        output_data: Any,
        error_message: Optional[str] = None,
        user_response: Optional[str] = None,
    ) -> Optional[int]:
        """Write the StepLog for one node visit."""
        return self._create_step_log(
            node=node,
            label=node.label,
            status=status,
            started_at=started_at,
            completed_at=utc_now(),
            duration_ms=duration_ms,
            input_data=input_data,
            output_data=output_data,
            error_message=error_message,
            user_response=user_response,
        )

    def record_substep(
        self,
        node: NodeType,
        label: str,
        status: str,
        started_at: Optional[datetime],
        completed_at: Optional[datetime],
        duration_ms: Optional[int],
        input_data: Any,
        output_data: Any,
        error_message: Optional[str] = None,
    ) -> Optional[int]:
        """Write a StepLog for one phase of a step (label already suffixed)."""
        return self._create_step_log(
            node=node,
            label=label,
            status=status,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=duration_ms,
            input_data=input_data,
            output_data=output_data,
            error_message=error_message,
            user_response=None,
        )
