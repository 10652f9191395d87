"""
Tests for initial context assembly.
"""

from datetime import datetime

import pytest
import pytz

from portalflow.core.context_builder import (
    ContextBuilder,
    format_timestamp,
    parse_workflow_only_data,
    previous_group_fields,
)
from portalflow.core.runner import WorkflowRunRequest
from portalflow.models import ExtractionGroupData, ExtractionType


# ============================================================================
# HELPER TESTS
# ============================================================================

@pytest.mark.unit
def test_format_timestamp_pacific():
    """Test UTC is rendered in Pacific time"""
    now = pytz.utc.localize(datetime(2024, 7, 4, 20, 5))

    assert format_timestamp(now) == "07/04/2024, 1:05 PM"


@pytest.mark.unit
def test_format_timestamp_midnight_hour():
    """Test hour zero renders as 12 AM"""
    now = pytz.utc.localize(datetime(2024, 1, 15, 8, 30))

    assert format_timestamp(now) == "01/15/2024, 12:30 AM"


@pytest.mark.unit
def test_parse_workflow_only_data():
    """Test object, JSON text and invalid input"""
    assert parse_workflow_only_data({"a": 1}) == {"a": 1}
    assert parse_workflow_only_data('{"b": 2}') == {"b": 2}
    assert parse_workflow_only_data("not json") == {}
    assert parse_workflow_only_data("[1, 2]") == {}
    assert parse_workflow_only_data(None) == {}


@pytest.mark.unit
def test_previous_group_fields(db_session):
    """Test only earlier groups of the same session are prefixed"""
    db_session.add_all([
        ExtractionGroupData(session_id="s1", group_order=1, extracted_fields={"bol": "B1"}),
        ExtractionGroupData(session_id="s1", group_order=2, extracted_fields={"pro": "P2"}),
        ExtractionGroupData(session_id="s1", group_order=3, extracted_fields={"late": "L3"}),
        ExtractionGroupData(session_id="other", group_order=1, extracted_fields={"bol": "X"}),
    ])
    db_session.commit()

    assert previous_group_fields(db_session, "s1", 3) == {"group1_bol": "B1", "group2_pro": "P2"}


# ============================================================================
# BUILDER TESTS
# ============================================================================

@pytest.mark.unit
def test_extraction_context_precedence():
    """Test payload fields override contextData, which overrides workflowOnlyData"""
    request = WorkflowRunRequest(
        workflowId=1,
        pdfFilename="scan.pdf",
        extractionTypeFilename="typed.pdf",
        userId="u1",
        senderEmail="from@example.com",
        workflowOnlyData='{"carrier": "seed", "route": "R1"}',
        contextData={"carrier": "ctx", "priority": "high"},
    )
    payload = {"carrier": "payload", "orders": [{"orderId": "A1"}, {"orderId": "B2"}]}

    context = ContextBuilder(mode="extraction").build(request, payload, "JSON")

    assert context["carrier"] == "payload"
    assert context["route"] == "R1"
    assert context["priority"] == "high"
    assert context["orderId"] == "A1"
    assert context["extractedData"] is payload
    assert context["pdfFilename"] == "typed.pdf"
    assert context["senderEmail"] == "from@example.com"
    assert context["extractionTypeName"] == "Unknown"
    assert context["formatType"] == "JSON"
    assert "timestamp" in context


@pytest.mark.unit
def test_extraction_context_uses_type_details(db_session):
    """Test the type's name and filename template are seeded"""
    extraction_type = ExtractionType(name="Invoices", format_type="JSON", filename_template="{{invoiceNumber}}")
    db_session.add(extraction_type)
    db_session.commit()

    request = WorkflowRunRequest(workflowId=1)
    context = ContextBuilder(mode="extraction").build(request, {}, "JSON", extraction_type)

    assert context["extractionTypeName"] == "Invoices"
    assert context["extractionTypeFilename"] == "{{invoiceNumber}}"


@pytest.mark.unit
def test_csv_payload_is_not_spread():
    """Test CSV text stays in extractedData only"""
    request = WorkflowRunRequest(workflowId=1, formatType="CSV")

    context = ContextBuilder(mode="transformation").build(request, "a,b\n1,2", "CSV")

    assert context["extractedData"] == "a,b\n1,2"
    assert context["formatType"] == "CSV"
    assert "a" not in context


@pytest.mark.unit
def test_transformation_seed():
    """Test transformation mode records the setup filename"""
    request = WorkflowRunRequest(workflowId=1, pdfFilename="setup.pdf", workflowOnlyData={"ignored": True})

    context = ContextBuilder(mode="transformation").build(request, {}, "JSON")

    assert context["transformSetupFilename"] == "setup.pdf"
    assert "ignored" not in context
    assert "timestamp" not in context


@pytest.mark.unit
def test_group_fields_merged_for_later_groups(db_session):
    """Test groupN_ fields are added from group 2 on"""
    db_session.add(ExtractionGroupData(session_id="s1", group_order=1, extracted_fields={"bol": "B1"}))
    db_session.commit()

    request = WorkflowRunRequest(workflowId=1, sessionId="s1", groupOrder=2)
    context = ContextBuilder(db_session, mode="extraction").build(request, {}, "JSON")

    assert context["group1_bol"] == "B1"
