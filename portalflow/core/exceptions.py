"""
Custom Exceptions for Portalflow

This module defines the exception types raised by the workflow interpreter.

Exception Hierarchy:
- PortalflowException (base)
  - WorkflowError
    - GraphValidationError (graph cannot be loaded)
    - GraphExecutionError (traversal failure)
      - GraphCycleError (visit cap exceeded)
    - WorkflowRunError (run failed, annotated with log ids)
  - StepError (carries output_data for the failed step log)
    - StepConfigurationError (bad config, raised before any external call)
    - ExternalCallError
      - ApiCallError (non-2xx HTTP response)
      - AIProviderError (generative AI call raised)
      - AIResponseParseError (AI text was not valid JSON)
    - NoMatchError (AI decision found nothing and failOnNoMatch is set)

The engine never retries. Callers surface the message plus log ids.
"""

from typing import Any, Optional


class PortalflowException(Exception):
    """Base exception for all Portalflow errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ============================================================================
# WORKFLOW ERRORS
# ============================================================================

class WorkflowError(PortalflowException):
    """Base class for workflow-related errors"""
    pass


class GraphValidationError(WorkflowError):
    """
    Workflow structure is invalid (e.g., no start node, unparseable node).
    Fix the workflow definition.
    """
    pass


class GraphExecutionError(WorkflowError):
    """Traversal failed for a reason not attributable to a single step."""
    pass


class GraphCycleError(GraphExecutionError):
    """
    Traversal exceeded the node visit cap.

    The engine does not analyse the graph for cycles, it only counts visits.
    """

    def __init__(self, max_visits: int):
        super().__init__(
            f"Graph traversal exceeded maximum of {max_visits} node visits. "
            f"Possible cycle detected."
        )
        self.max_visits = max_visits


class WorkflowRunError(WorkflowError):
    """
    A workflow run failed.

    Annotated with the log ids so the caller can report
    "workflow failed, see log #X" without re-deriving context.
    """

    def __init__(
        self,
        message: str,
        execution_log_id: Optional[int] = None,
        extraction_log_id: Optional[int] = None,
        node_id: Optional[str] = None,
        node_label: Optional[str] = None,
    ):
        super().__init__(message)
        self.execution_log_id = execution_log_id
        self.extraction_log_id = extraction_log_id
        self.node_id = node_id
        self.node_label = node_label

    def to_dict(self) -> dict:
        return {
            "error": "Workflow execution failed",
            "details": self.message,
            "executionLogId": self.execution_log_id,
            "extractionLogId": self.extraction_log_id,
            "nodeId": self.node_id,
        }


# ============================================================================
# STEP ERRORS
# ============================================================================

class StepError(PortalflowException):
    """
    Base class for step executor failures.

    output_data is whatever partial result the step had when it failed
    (request URL, response status, response body). It is written to the
    failed step log.
    """

    def __init__(self, message: str, output_data: Optional[Any] = None):
        super().__init__(message)
        self.output_data = output_data


class StepConfigurationError(StepError):
    """
    Step configuration is missing or invalid.
    Raised before any external call is made.
    """
    pass


class ExternalCallError(StepError):
    """An external collaborator (HTTP, AI, SFTP, SMTP, document store) failed."""
    pass


class ApiCallError(ExternalCallError):
    """HTTP call returned a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        status_text: Optional[str] = None,
        body: Any = None,
        output_data: Optional[Any] = None,
    ):
        super().__init__(message, output_data=output_data)
        self.status_code = status_code
        self.status_text = status_text
        self.body = body


class AIProviderError(ExternalCallError):
    """Generative AI provider raised while producing a completion."""
    pass


class AIResponseParseError(ExternalCallError):
    """Generative AI response was not the JSON the caller asked for."""

    def __init__(self, message: str, raw_text: str = "", output_data: Optional[Any] = None):
        super().__init__(message, output_data=output_data)
        self.raw_text = raw_text


class NoMatchError(StepError):
    """AI decision could not match a candidate and the step requires one."""
    pass
