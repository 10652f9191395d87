"""
Tests for the ai_decision step.
"""

import json
from unittest.mock import Mock

import pytest

from portalflow.core.exceptions import AIResponseParseError, ApiCallError, NoMatchError, StepConfigurationError
from portalflow.core.integrations.http_client import HttpResponse
from portalflow.core.integrations.profiles import ApiProfile
from portalflow.core.steps.ai_decision import (
    AiDecisionStep,
    extract_candidates,
    identifier_keys,
    resolve_source_fields,
    verify_match_index,
)
from portalflow.models import StepLog


CANDIDATES = [
    {"id": "C1", "name": "Alpha", "city": "Reno", "score": 1},
    {"id": "C2", "name": "Beta", "city": "Elko", "score": 2},
    {"id": "C3", "name": "Gamma", "city": "Reno", "score": 3},
]


@pytest.fixture
def decision_services(services, mock_http):
    services.profiles = Mock()
    services.profiles.get_api_profile.return_value = ApiProfile(base_url="https://tms.test", auth_token="tok")
    mock_http.request.return_value = HttpResponse(200, "OK", {"data": {"items": CANDIDATES}})
    return services


def decision_node(make_node, **overrides):
    config = {
        "sourceFields": [{"label": "Customer", "value": "{{customerName}}"}],
        "apiPath": "/customers",
        "resultArrayPath": "data.items",
        "returnFieldPath": "id",
        "outputVariableName": "customerId",
    }
    config.update(overrides)
    return make_node("ai_decision", config, id="decide", label="Match Customer")


# ============================================================================
# HELPER TESTS
# ============================================================================

@pytest.mark.unit
def test_resolve_source_fields_ignores_incomplete():
    """Test entries need both label and value"""
    fields = [{"label": "A", "value": "{{a}}"}, {"label": "B"}, {"value": "x"}]

    assert resolve_source_fields(fields, {"a": 1}) == {"A": "1"}


@pytest.mark.unit
def test_extract_candidates():
    """Test array paths, bare lists and single objects"""
    assert extract_candidates({"d": [1, 2]}, "d") == [1, 2]
    assert extract_candidates({"d": {"x": 1}}, "d") == [{"x": 1}]
    assert extract_candidates({"d": None}, "d") == []
    assert extract_candidates([1], "") == [1]
    assert extract_candidates({"x": 1}, "") == [{"x": 1}]


@pytest.mark.unit
def test_identifier_keys():
    """Test the first three non-empty string keys"""
    assert identifier_keys({"n": 1, "a": "x", "b": "", "c": "y", "d": "z", "e": "w"}) == ["a", "c", "d"]
    assert identifier_keys("text") == []


@pytest.mark.unit
def test_verify_match_index_partial_match():
    """Test a partial field match corrects the index"""
    ai_result = {"matchIndex": 0, "reason": "r", "matchedFields": {"id": "C3", "name": "Gamma", "city": "Elsewhere"}}

    verify_match_index(ai_result, CANDIDATES, ["id", "name", "city"])

    assert ai_result["matchIndex"] == 2
    assert "via partial match" in ai_result["reason"]


@pytest.mark.unit
def test_verify_match_index_keeps_consistent_index():
    """Test a consistent answer is left alone"""
    ai_result = {"matchIndex": 1, "reason": "r", "matchedFields": {"id": "c2", "name": "BETA ", "city": "Elko"}}

    verify_match_index(ai_result, CANDIDATES, ["id", "name", "city"])

    assert ai_result == {"matchIndex": 1, "reason": "r", "matchedFields": {"id": "c2", "name": "BETA ", "city": "Elko"}}


# ============================================================================
# STEP TESTS
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_ai_match_with_corrected_index(db_session, execution_logger, make_node, make_run, decision_services, mock_ai_provider, mock_http):
    """Test the AI answer is verified against matchedFields"""
    mock_ai_provider.generate.return_value = json.dumps({
        "matchIndex": 0,
        "confidence": 90,
        "reason": "Same name",
        "matchedFields": {"id": "C2", "name": "Beta", "city": "Elko"},
    })
    node = decision_node(make_node, responseDataMappings=[{"responsePath": "city", "updatePath": "customerCity"}])
    run = make_run({"customerName": "Beta Corp", "extractedData": {}}, execution_logger=execution_logger)

    result = await AiDecisionStep().execute(node, run, decision_services)

    mock_http.request.assert_awaited_once_with(
        "GET",
        "https://tms.test/customers",
        headers={"Content-Type": "application/json", "Authorization": "Bearer tok"},
    )
    prompt = mock_ai_provider.generate.call_args.args[0][0]["text"]
    assert '"Customer": "Beta Corp"' in prompt
    assert '"id", "name", "city"' in prompt

    assert result.output["aiResult"]["matchIndex"] == 1
    assert "[Index corrected from 0 to 1]" in result.output["aiResult"]["reason"]
    assert result.output["matchedValue"] == "C2"
    assert result.api_response == {"data": {"items": CANDIDATES}}
    assert run.context.get("customerId") == "C2"
    assert run.context.get("customerCity") == "Elko"
    assert run.context.get("extractedData") == {"customerId": "C2", "customerCity": "Elko"}

    labels = [row.node_label for row in db_session.query(StepLog).order_by(StepLog.id)]
    assert labels == [
        "Match Customer - Source Field Resolution",
        "Match Customer - API Lookup",
        "Match Customer - AI Matching",
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_single_candidate_skips_ai(make_node, make_run, decision_services, mock_ai_provider, mock_http):
    """Test one candidate is taken without calling the AI"""
    mock_http.request.return_value = HttpResponse(200, "OK", {"data": {"items": [CANDIDATES[0]]}})
    run = make_run({"customerName": "Alpha"})

    result = await AiDecisionStep().execute(decision_node(make_node), run, decision_services)

    mock_ai_provider.generate.assert_not_awaited()
    assert result.output["aiSkipped"] is True
    assert run.context.get("customerId") == "C1"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_record_field_maps_null(make_node, make_run, decision_services, mock_http):
    """Test a mapping whose field is absent on the match writes null"""
    mock_http.request.return_value = HttpResponse(200, "OK", {"data": {"items": [{"id": "C1", "name": "Alpha"}]}})
    node = decision_node(make_node, responseDataMappings=[{"responsePath": "city", "updatePath": "customerCity"}])
    run = make_run({"customerName": "Alpha", "customerCity": "stale", "extractedData": {}})

    await AiDecisionStep().execute(node, run, decision_services)

    assert run.context.get("customerCity") is None
    assert run.context.get("extractedData") == {"customerId": "C1", "customerCity": None}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_single_candidate_uses_ai_when_configured(make_node, make_run, decision_services, mock_ai_provider, mock_http):
    """Test skipAiIfSingleResult=false still asks the AI"""
    mock_http.request.return_value = HttpResponse(200, "OK", {"data": {"items": [CANDIDATES[0]]}})
    mock_ai_provider.generate.return_value = '{"matchIndex": 0, "confidence": 80, "reason": "ok"}'
    node = decision_node(make_node, skipAiIfSingleResult=False)

    result = await AiDecisionStep().execute(node, make_run(), decision_services)

    mock_ai_provider.generate.assert_awaited_once()
    assert result.output["matchedValue"] == "C1"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_zero_candidates(make_node, make_run, decision_services, mock_http):
    """Test an empty lookup completes without a match by default"""
    mock_http.request.return_value = HttpResponse(200, "OK", {"data": {"items": []}})

    result = await AiDecisionStep().execute(decision_node(make_node), make_run(), decision_services)

    assert result.output["candidateCount"] == 0
    assert result.output["matchedRecord"] is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_zero_candidates_fail_on_no_match(make_node, make_run, decision_services, mock_http):
    """Test failOnNoMatch turns an empty lookup into an error"""
    mock_http.request.return_value = HttpResponse(200, "OK", {"data": {"items": []}})

    with pytest.raises(NoMatchError, match="zero candidates"):
        await AiDecisionStep().execute(decision_node(make_node, failOnNoMatch=True), make_run(), decision_services)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ai_no_match(make_node, make_run, decision_services, mock_ai_provider):
    """Test matchIndex -1 stores a null match"""
    mock_ai_provider.generate.return_value = '{"matchIndex": -1, "confidence": 0, "reason": "No suitable match found"}'
    run = make_run({"customerId": "stale", "extractedData": {}})

    result = await AiDecisionStep().execute(decision_node(make_node), run, decision_services)

    assert result.output["matchedRecord"] is None
    assert run.context.get("customerId") is None
    assert run.context.get("extractedData") == {"customerId": None}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ai_no_match_fails_when_required(make_node, make_run, decision_services, mock_ai_provider):
    """Test failOnNoMatch raises on an AI no-match"""
    mock_ai_provider.generate.return_value = '{"matchIndex": -1, "confidence": 0, "reason": "nothing"}'

    with pytest.raises(NoMatchError, match="No confident match found. Reason: nothing"):
        await AiDecisionStep().execute(decision_node(make_node, failOnNoMatch=True), make_run(), decision_services)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_invalid_match_index_falls_back_to_first(make_node, make_run, decision_services, mock_ai_provider):
    """Test a non-integer matchIndex selects the first candidate"""
    mock_ai_provider.generate.return_value = '{"matchIndex": "second", "confidence": 50, "reason": "guess"}'

    result = await AiDecisionStep().execute(decision_node(make_node), make_run(), decision_services)

    assert result.output["matchedValue"] == "C1"
    assert "invalid matchIndex" in result.output["aiResult"]["reason"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unparseable_ai_response(make_node, make_run, decision_services, mock_ai_provider):
    """Test non-JSON AI output fails the step"""
    mock_ai_provider.generate.return_value = "I think it's the second one"

    with pytest.raises(AIResponseParseError):
        await AiDecisionStep().execute(decision_node(make_node), make_run(), decision_services)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_lookup_failure(db_session, execution_logger, make_node, make_run, decision_services, mock_http):
    """Test a failed lookup logs the phase and raises"""
    mock_http.request.return_value = HttpResponse(503, "Service Unavailable", {"error": "down"})
    run = make_run(execution_logger=execution_logger)

    with pytest.raises(ApiCallError) as exc_info:
        await AiDecisionStep().execute(decision_node(make_node), run, decision_services)

    assert exc_info.value.status_code == 503
    failed = db_session.query(StepLog).filter(StepLog.status == "failed").one()
    assert failed.node_label == "Match Customer - API Lookup"
    assert failed.error_message == "API call failed: 503"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_multiple_candidates_need_provider(make_node, make_run, decision_services):
    """Test AI matching without a provider is a configuration error"""
    decision_services.ai_provider = None

    with pytest.raises(StepConfigurationError, match="No AI provider configured"):
        await AiDecisionStep().execute(decision_node(make_node), make_run(), decision_services)
