"""
Tests for ContextManager and RunState.
"""

import time

import pytest

from portalflow.core.context import ContextManager, RunState, utc_now
from portalflow.core.nodes import StepNode
from portalflow.models import StepLog


# ============================================================================
# CONTEXT MANAGER TESTS
# ============================================================================

@pytest.mark.unit
def test_initial_context_is_copied():
    """Test the caller's dict is not mutated by set()"""
    initial = {"a": 1}
    context = ContextManager(initial)

    context.set("b", 2)

    assert initial == {"a": 1}
    assert context.get_all() == {"a": 1, "b": 2}


@pytest.mark.unit
def test_get_set_update_delete():
    """Test basic key operations"""
    context = ContextManager()

    context.set("status", "new")
    context.update({"status": "approved", "carrier": "ACME"})

    assert context.get("status") == "approved"
    assert context.get("missing", "fallback") == "fallback"
    assert context.has("carrier")
    assert context.size() == 2
    assert context.delete("carrier") is True
    assert context.delete("carrier") is False


@pytest.mark.unit
def test_snapshot_is_deep_copy():
    """Test later mutation does not leak into a snapshot"""
    context = ContextManager({"extractedData": {"total": 1}})

    snapshot = context.snapshot()
    context.get("extractedData")["total"] = 2

    assert snapshot["extractedData"]["total"] == 1


@pytest.mark.unit
def test_view_is_read_only_and_live():
    """Test view reflects writes but rejects direct assignment"""
    context = ContextManager()
    view = context.view()

    context.set("k", "v")

    assert view["k"] == "v"
    with pytest.raises(TypeError):
        view["k"] = "other"


@pytest.mark.unit
def test_set_path_writes_nested_value():
    """Test dotted writes create intermediates"""
    context = ContextManager()

    last = context.set_path("extractedData.customer.name", "ACME")

    assert last == "name"
    assert context.get("extractedData") == {"customer": {"name": "ACME"}}


@pytest.mark.unit
def test_extracted_data_create():
    """Test extractedData is created only on request"""
    context = ContextManager({"extractedData": "not-an-object"})

    assert context.extracted_data() is None

    created = context.extracted_data(create=True)
    created["x"] = 1

    assert context.get("extractedData") == {"x": 1}


# ============================================================================
# RUN STATE TESTS
# ============================================================================

@pytest.mark.unit
def test_run_state_defaults():
    """Test a fresh run state"""
    run = RunState(context=ContextManager())

    assert run.format_type == "JSON"
    assert run.last_api_response is None
    assert run.visited_node_ids == []


@pytest.mark.unit
def test_log_substep_without_logger_is_noop():
    """Test substeps are dropped when logging is disabled"""
    run = RunState(context=ContextManager())
    node = StepNode(id="n1", step_type="read_email", label="Read")

    assert run.log_substep(node, "Phase", "completed", utc_now(), time.monotonic(), {}, {}) is None


@pytest.mark.unit
def test_log_substep_labels_entry(db_session, execution_logger):
    """Test the substep label combines node label and suffix"""
    run = RunState(context=ContextManager(), execution_logger=execution_logger)
    node = StepNode(id="n1", step_type="read_email", label="Read Email")

    step_log_id = run.log_substep(node, "AI Extraction", "completed", utc_now(), time.monotonic(), {"a": 1}, {"b": 2})

    step_log = db_session.query(StepLog).filter(StepLog.id == step_log_id).one()
    assert step_log.node_label == "Read Email - AI Extraction"
    assert step_log.status == "completed"
    assert step_log.output_data == {"b": 2}
