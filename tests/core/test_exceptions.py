"""
Tests for the exception hierarchy.
"""

import pytest

from portalflow.core.exceptions import (
    PortalflowException,
    WorkflowError,
    GraphExecutionError,
    GraphCycleError,
    WorkflowRunError,
    StepError,
    StepConfigurationError,
    ExternalCallError,
    ApiCallError,
    AIProviderError,
    AIResponseParseError,
    NoMatchError,
)


@pytest.mark.unit
def test_hierarchy():
    """Test the exception tree"""
    assert issubclass(GraphCycleError, GraphExecutionError)
    assert issubclass(GraphExecutionError, WorkflowError)
    assert issubclass(WorkflowRunError, WorkflowError)
    assert issubclass(StepConfigurationError, StepError)
    assert issubclass(ApiCallError, ExternalCallError)
    assert issubclass(AIProviderError, ExternalCallError)
    assert issubclass(AIResponseParseError, ExternalCallError)
    assert issubclass(NoMatchError, StepError)
    assert issubclass(StepError, PortalflowException)


@pytest.mark.unit
def test_cycle_error_message():
    """Test the cap is reported"""
    error = GraphCycleError(100)

    assert error.max_visits == 100
    assert "100" in error.message


@pytest.mark.unit
def test_workflow_run_error_to_dict():
    """Test the API error body"""
    error = WorkflowRunError("boom", execution_log_id=3, extraction_log_id=9, node_id="n2", node_label="Call")

    assert error.to_dict() == {
        "error": "Workflow execution failed",
        "details": "boom",
        "executionLogId": 3,
        "extractionLogId": 9,
        "nodeId": "n2",
    }


@pytest.mark.unit
def test_step_errors_carry_output():
    """Test partial output travels with step failures"""
    error = ApiCallError("HTTP 500", status_code=500, status_text="Server Error", body={"e": 1}, output_data={"url": "x"})

    assert error.status_code == 500
    assert error.body == {"e": 1}
    assert error.output_data == {"url": "x"}
    assert str(error) == "HTTP 500"
