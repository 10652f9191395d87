"""
Tests for WorkflowRunner: request contract, setup phases and failure handling.
"""

import json

import pytest

from portalflow.core.exceptions import WorkflowRunError
from portalflow.core.integrations.http_client import HttpResponse
from portalflow.core.integrations.storage import FileStorage
from portalflow.core.runner import (
    PAYLOAD_BUCKET,
    WorkflowRunner,
    WorkflowRunRequest,
    WorkflowRunResult,
    parse_inline_payload,
)
from portalflow.models import (
    ExecutionLog,
    ExtractionLog,
    ExtractionType,
    FieldMappingFunction,
    StepLog,
    Workflow,
    WorkflowEdge,
    WorkflowNode,
)


@pytest.fixture
def workflow(db_session):
    """Workflow: start → api_call (POST https://tms.test/orders)."""
    workflow = Workflow(name="Create order")
    db_session.add(workflow)
    db_session.commit()

    db_session.add_all([
        WorkflowNode(id="start", workflow_id=workflow.id, node_type="start", label="Start"),
        WorkflowNode(
            id="create",
            workflow_id=workflow.id,
            node_type="step",
            step_type="api_call",
            label="Create Order",
            config_json={
                "url": "https://tms.test/orders",
                "requestBody": '{"ref": "{{orderId}}"}',
                "responseDataMappings": [{"responsePath": "id", "updatePath": "tmsOrderId"}],
            },
        ),
        WorkflowEdge(id="e1", workflow_id=workflow.id, source_node_id="start", target_node_id="create"),
    ])
    db_session.commit()
    return workflow


# ============================================================================
# CONTRACT TESTS
# ============================================================================

@pytest.mark.unit
def test_request_accepts_camel_and_snake_case():
    """Test both key styles populate the request"""
    assert WorkflowRunRequest(workflowId=3, pdfFilename="a.pdf").workflow_id == 3
    assert WorkflowRunRequest(workflow_id=3, pdf_filename="a.pdf").pdf_filename == "a.pdf"


@pytest.mark.unit
def test_result_serializes_camel_case():
    """Test the result dumps with its aliases"""
    result = WorkflowRunResult(final_context_data={"a": 1}, execution_log_id=4)

    dumped = result.model_dump(by_alias=True)

    assert dumped["finalContextData"] == {"a": 1}
    assert dumped["executionLogId"] == 4
    assert dumped["success"] is True


@pytest.mark.unit
@pytest.mark.parametrize("raw,format_type,expected", [
    (None, "JSON", {}),
    ("", "JSON", {}),
    ('{"a": 1}', "JSON", {"a": 1}),
    ("not json", "JSON", {}),
    ("a,b\n1,2", "CSV", "a,b\n1,2"),
    ({"a": 1}, "JSON", {"a": 1}),
])
def test_parse_inline_payload(raw, format_type, expected):
    """Test inline payload decoding per format"""
    assert parse_inline_payload(raw, format_type) == expected


@pytest.mark.unit
def test_unknown_mode_rejected(db_session, services):
    """Test the runner only accepts known modes"""
    with pytest.raises(ValueError, match="Unknown run mode"):
        WorkflowRunner(db_session, services, mode="replay")


# ============================================================================
# RUN TESTS
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_without_workflow_id(db_session, services):
    """Test a request must name a workflow"""
    with pytest.raises(WorkflowRunError, match="workflowId is required"):
        await WorkflowRunner(db_session, services).run(WorkflowRunRequest())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_successful_run(db_session, services, mock_http, workflow):
    """Test a run traverses the graph and completes both logs"""
    mock_http.request.return_value = HttpResponse(200, "OK", {"id": "T-9"})
    request = WorkflowRunRequest(
        workflowId=workflow.id,
        extractedData=json.dumps({"orders": [{"orderId": "A1"}]}),
        originalPdfFilename="scan.pdf",
        userId="u-1",
    )

    result = await WorkflowRunner(db_session, services).run(request)

    assert result.success is True
    assert result.last_api_response == {"id": "T-9"}
    assert result.final_context_data["orderId"] == "A1"
    assert result.final_context_data["tmsOrderId"] == "T-9"
    assert result.final_context_data["formatType"] == "JSON"

    assert mock_http.request.call_args.kwargs["body"] == '{"ref": "A1"}'

    execution_log = db_session.get(ExecutionLog, result.execution_log_id)
    assert execution_log.status == "completed"
    assert execution_log.processing_mode == "extraction"
    assert execution_log.extraction_log_id == result.extraction_log_id
    assert execution_log.user_id == "u-1"

    extraction_log = db_session.get(ExtractionLog, result.extraction_log_id)
    assert extraction_log.pdf_filename == "scan.pdf"
    assert extraction_log.processing_mode == "extraction"

    assert [row.node_id for row in db_session.query(StepLog)] == ["create"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transformation_run_keeps_csv(db_session, services, mock_http, workflow):
    """Test transformation mode honours the requested format"""
    request = WorkflowRunRequest(workflowId=workflow.id, extractedData="a,b\n1,2", formatType="csv")

    result = await WorkflowRunner(db_session, services, mode="transformation").run(request)

    assert result.final_context_data["formatType"] == "CSV"
    assert result.final_context_data["extractedData"] == "a,b\n1,2"
    assert db_session.get(ExecutionLog, result.execution_log_id).processing_mode == "transformation"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_payload_from_storage(db_session, services, workflow, tmp_path):
    """Test extractedDataStoragePath is read from the payload bucket"""
    storage = FileStorage(str(tmp_path))
    await storage.write(PAYLOAD_BUCKET, "runs/1.json", b'{"orderId": "S1"}')
    services.storage = storage
    request = WorkflowRunRequest(workflowId=workflow.id, extractedDataStoragePath="runs/1.json")

    result = await WorkflowRunner(db_session, services).run(request)

    assert result.final_context_data["extractedData"] == {"orderId": "S1"}
    assert result.final_context_data["orderId"] == "S1"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_function_mappings_applied_before_run(db_session, services, mock_http, workflow):
    """Test function-type field mappings fill the payload in extraction mode"""
    function = FieldMappingFunction(
        function_name="Full ref",
        function_logic={"type": "concatenate", "fields": ["prefix", "number"], "separator": "-"},
    )
    db_session.add(function)
    db_session.commit()
    extraction_type = ExtractionType(
        name="Invoices",
        format_type="json",
        field_mappings=[{"fieldName": "orderId", "type": "function", "functionId": function.id}],
    )
    db_session.add(extraction_type)
    db_session.commit()

    request = WorkflowRunRequest(
        workflowId=workflow.id,
        extractionTypeId=extraction_type.id,
        extractedData=json.dumps({"orders": [{"prefix": "INV", "number": "7"}]}),
    )

    result = await WorkflowRunner(db_session, services).run(request)

    assert result.final_context_data["orderId"] == "INV-7"
    assert result.final_context_data["extractionTypeName"] == "Invoices"
    assert mock_http.request.call_args.kwargs["body"] == '{"ref": "INV-7"}'


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_start_node_fails_run(db_session, services):
    """Test a graph without a start node fails with both log ids"""
    workflow = Workflow(name="Empty")
    db_session.add(workflow)
    db_session.commit()

    with pytest.raises(WorkflowRunError, match="No start node found in workflow") as exc_info:
        await WorkflowRunner(db_session, services).run(WorkflowRunRequest(workflowId=workflow.id))

    error = exc_info.value
    assert error.execution_log_id is not None
    assert error.extraction_log_id is not None
    execution_log = db_session.get(ExecutionLog, error.execution_log_id)
    assert execution_log.status == "failed"
    assert execution_log.error_message == "No start node found in workflow"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_step_failure_fails_run(db_session, services, mock_http, workflow):
    """Test a failing step surfaces with the failing node and log ids"""
    mock_http.request.return_value = HttpResponse(422, "Unprocessable Entity", {"error": "bad ref"})

    with pytest.raises(WorkflowRunError) as exc_info:
        await WorkflowRunner(db_session, services).run(
            WorkflowRunRequest(workflowId=workflow.id, extractedData='{"orderId": "A1"}')
        )

    error = exc_info.value
    assert error.node_id == "create"
    assert error.extraction_log_id is not None
    assert error.to_dict()["executionLogId"] == error.execution_log_id

    execution_log = db_session.get(ExecutionLog, error.execution_log_id)
    assert execution_log.status == "failed"
    assert execution_log.current_node_id == "create"
    assert db_session.query(StepLog).one().status == "failed"
