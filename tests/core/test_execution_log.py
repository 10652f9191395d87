"""
Tests for ExecutionLogger and best-effort log writes.
"""

from datetime import datetime
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from portalflow.core.context import utc_now
from portalflow.core.execution_log import ExecutionLogger, log_best_effort, make_json_serializable
from portalflow.core.nodes import StartNode, StepNode
from portalflow.models import ExecutionLog, StepLog


# ============================================================================
# SERIALIZATION TESTS
# ============================================================================

@pytest.mark.unit
def test_make_json_serializable():
    """Test datetimes, bytes, sets and objects are converted"""
    value = {
        "when": datetime(2024, 1, 2, 3, 4, 5),
        "raw": b"hi",
        "tags": {"a"},
        "pair": (1, 2),
        1: object,
    }

    result = make_json_serializable(value)

    assert result["when"] == "2024-01-02T03:04:05"
    assert result["raw"] == "aGk="
    assert result["tags"] == ["a"]
    assert result["pair"] == [1, 2]
    assert isinstance(result["1"], str)


# ============================================================================
# BEST-EFFORT TESTS
# ============================================================================

@pytest.mark.unit
def test_log_best_effort_passes_result():
    """Test a successful write returns its value"""
    assert log_best_effort(None, "write", lambda: 5) == 5


@pytest.mark.unit
def test_log_best_effort_swallows_and_rolls_back():
    """Test a failed write is rolled back and returns None"""
    session = Mock()

    def failing():
        raise OperationalError("INSERT", {}, Exception("db down"))

    assert log_best_effort(session, "write", failing) is None
    session.rollback.assert_called_once()


@pytest.mark.unit
def test_log_best_effort_propagates_unexpected_errors():
    """Test programming errors are not swallowed"""
    with pytest.raises(KeyError):
        log_best_effort(None, "write", lambda: {}["x"])


# ============================================================================
# EXECUTION LOG TESTS
# ============================================================================

@pytest.mark.unit
def test_start_and_complete(db_session):
    """Test the run lifecycle on the ExecutionLog row"""
    execution_logger = ExecutionLogger(db_session, workflow_id=None, mode="transformation", user_id="u1")

    execution_log_id = execution_logger.start({"a": 1})
    execution_logger.update_progress(StepNode(id="n1", step_type="api_call", label="Call"), {"a": 2})
    execution_logger.complete({"a": 3})

    execution_log = db_session.get(ExecutionLog, execution_log_id)
    assert execution_log.status == "completed"
    assert execution_log.processing_mode == "transformation"
    assert execution_log.user_id == "u1"
    assert execution_log.current_node_id == "n1"
    assert execution_log.current_node_label == "Call"
    assert execution_log.context_data == {"a": 3}
    assert execution_log.completed_at is not None


@pytest.mark.unit
def test_fail_records_message(db_session, execution_logger):
    """Test failed runs keep the error and context"""
    execution_logger.fail("boom", {"x": 1})

    execution_log = db_session.get(ExecutionLog, execution_logger.execution_log_id)
    assert execution_log.status == "failed"
    assert execution_log.error_message == "boom"
    assert execution_log.context_data == {"x": 1}


@pytest.mark.unit
def test_updates_without_start_are_noops(db_session):
    """Test an unstarted logger writes nothing"""
    execution_logger = ExecutionLogger(db_session, workflow_id=None)

    execution_logger.complete({})
    step_log_id = execution_logger.record_step(StartNode(id="s"), "completed", utc_now(), 1, {}, {})

    assert step_log_id is None
    assert db_session.query(ExecutionLog).count() == 0


# ============================================================================
# STEP LOG TESTS
# ============================================================================

@pytest.mark.unit
def test_record_step(db_session, execution_logger):
    """Test a step log row carries node, data and config"""
    node = StepNode(id="n1", step_type="api_call", label="Call", config_json={"url": "/x"})

    step_log_id = execution_logger.record_step(
        node,
        "failed",
        utc_now(),
        15,
        {"config": {"url": "/x"}},
        {"status": 500},
        error_message="HTTP 500",
        user_response="Called /x",
    )

    step_log = db_session.get(StepLog, step_log_id)
    assert step_log.execution_log_id == execution_logger.execution_log_id
    assert step_log.node_id == "n1"
    assert step_log.node_label == "Call"
    assert step_log.step_type == "api_call"
    assert step_log.status == "failed"
    assert step_log.duration_ms == 15
    assert step_log.error_message == "HTTP 500"
    assert step_log.output_data == {"status": 500}
    assert step_log.config_json == {"url": "/x"}
    assert step_log.user_response == "Called /x"


@pytest.mark.unit
def test_record_step_for_start_node(db_session, execution_logger):
    """Test the start node logs its node type and no config"""
    step_log_id = execution_logger.record_step(StartNode(id="s", label="Start"), "completed", utc_now(), 0, {}, {})

    step_log = db_session.get(StepLog, step_log_id)
    assert step_log.step_type == "start"
    assert step_log.config_json is None
