"""
Tests for field function evaluation.
"""

import pytest

from portalflow.core.exceptions import AIProviderError
from portalflow.core.functions import FieldFunctionEvaluator, set_field_value


async def no_sleep(_seconds):
    return None


# ============================================================================
# SYNCHRONOUS FUNCTION TESTS
# ============================================================================

@pytest.mark.unit
def test_template_blanks_unresolved():
    """Test template functions drop missing values"""
    evaluator = FieldFunctionEvaluator()
    logic = {"type": "template", "template": "{{first}} {{middle}}{{last}}"}

    assert evaluator.evaluate(logic, {"first": "Ada", "last": "Lovelace"}) == "Ada Lovelace"


@pytest.mark.unit
def test_concatenate_skips_empty_values():
    """Test concatenate joins non-empty fields"""
    evaluator = FieldFunctionEvaluator()
    logic = {"type": "concatenate", "fields": ["city", "county", "state"], "separator": ", "}

    assert evaluator.evaluate(logic, {"city": "Reno", "state": "NV"}) == "Reno, NV"


@pytest.mark.unit
def test_concatenate_default_separator():
    """Test a missing separator means a space"""
    evaluator = FieldFunctionEvaluator()

    assert evaluator.evaluate({"type": "concatenate", "fields": ["a", "b"]}, {"a": "X", "b": 2}) == "X 2"


@pytest.mark.unit
def test_conditional_first_match_wins():
    """Test conditions are tried in order"""
    evaluator = FieldFunctionEvaluator()
    logic = {
        "type": "conditional",
        "conditions": [
            {"field": "weight", "operator": "greater_than", "value": "100", "result": "HEAVY"},
            {"field": "weight", "operator": "greater_than", "value": "10", "result": "MEDIUM {{unit}}"},
        ],
        "defaultValue": "LIGHT",
    }

    assert evaluator.evaluate(logic, {"weight": "500"}) == "HEAVY"
    assert evaluator.evaluate(logic, {"weight": "50", "unit": "kg"}) == "MEDIUM kg"
    assert evaluator.evaluate(logic, {"weight": "5"}) == "LIGHT"


@pytest.mark.unit
def test_value_map_is_case_insensitive():
    """Test both mapping shapes"""
    evaluator = FieldFunctionEvaluator()

    object_map = {"type": "value_map", "field": "status", "mappings": {"a": "Active"}, "defaultValue": "Unknown"}
    list_map = {"type": "value_map", "field": "status", "mappings": [{"from": "I", "to": "Inactive"}]}

    assert evaluator.evaluate(object_map, {"status": " A "}) == "Active"
    assert evaluator.evaluate(object_map, {"status": "Z"}) == "Unknown"
    assert evaluator.evaluate(list_map, {"status": "i"}) == "Inactive"


@pytest.mark.unit
def test_substring_and_case():
    """Test substring, uppercase and lowercase"""
    evaluator = FieldFunctionEvaluator()
    record = {"code": "ABCDEF", "name": "Mixed"}

    assert evaluator.evaluate({"type": "substring", "field": "code", "start": 1, "length": 3}, record) == "BCD"
    assert evaluator.evaluate({"type": "substring", "field": "code", "start": 4}, record) == "EF"
    assert evaluator.evaluate({"type": "uppercase", "field": "name"}, record) == "MIXED"
    assert evaluator.evaluate({"type": "lowercase", "field": "name"}, record) == "mixed"


@pytest.mark.unit
def test_unknown_type_returns_none():
    """Test unknown function types evaluate to None"""
    assert FieldFunctionEvaluator().evaluate({"type": "regex"}, {}) is None


# ============================================================================
# FIELD WRITE TESTS
# ============================================================================

@pytest.mark.unit
def test_set_field_value_fans_out_over_lists():
    """Test a list segment writes into every element"""
    record = {"items": [{"sku": "A"}, {"sku": "B"}]}

    set_field_value(record, "items.weightUnit", "LB")

    assert record["items"] == [{"sku": "A", "weightUnit": "LB"}, {"sku": "B", "weightUnit": "LB"}]


@pytest.mark.unit
def test_set_field_value_creates_objects():
    """Test missing intermediates are created"""
    record = {}

    set_field_value(record, "shipper.address.zip", "89501")

    assert record == {"shipper": {"address": {"zip": "89501"}}}


# ============================================================================
# ADDRESS LOOKUP TESTS
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_address_lookup_without_provider_is_skipped():
    """Test lookups return None when AI is not configured"""
    evaluator = FieldFunctionEvaluator()

    result = await evaluator.evaluate_async({"type": "address_lookup", "addressFields": ["city"]}, {"city": "Reno"})

    assert result is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_address_lookup_calls_provider(mock_ai_provider):
    """Test the address is sent and the value is returned"""
    mock_ai_provider.generate.return_value = '```json\n{"value": "89501"}\n```'
    evaluator = FieldFunctionEvaluator(ai_provider=mock_ai_provider, sleep=no_sleep)

    result = await evaluator.evaluate_async(
        {"type": "address_lookup", "addressFields": ["street", "city"], "lookupType": "postal_code"},
        {"street": "1 Main St", "city": "Reno"},
    )

    assert result == "89501"
    prompt = mock_ai_provider.generate.call_args.args[0][0]["text"]
    assert "1 Main St, Reno" in prompt


@pytest.mark.unit
@pytest.mark.asyncio
async def test_address_lookup_retries_provider_errors(mock_ai_provider):
    """Test provider failures are retried"""
    mock_ai_provider.generate.side_effect = [AIProviderError("timeout"), '{"value": "NV"}']
    evaluator = FieldFunctionEvaluator(ai_provider=mock_ai_provider, sleep=no_sleep)

    result = await evaluator.lookup_address({"addressFields": ["city"], "lookupType": "state"}, {"city": "Reno"})

    assert result == "NV"
    assert mock_ai_provider.generate.call_count == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_address_lookup_null_value(mock_ai_provider):
    """Test an undetermined value becomes None"""
    mock_ai_provider.generate.return_value = '{"value": null}'
    evaluator = FieldFunctionEvaluator(ai_provider=mock_ai_provider, sleep=no_sleep)

    assert await evaluator.lookup_address({"addressFields": ["city"]}, {"city": "Nowhere"}) is None


# ============================================================================
# MAPPING APPLICATION TESTS
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_apply_mappings_over_orders():
    """Test every order gets its computed field"""
    evaluator = FieldFunctionEvaluator()
    payload = {"orders": [{"first": "Ada", "last": "L"}, {"first": "Alan", "last": "T"}]}
    mappings = [
        {"fieldName": "fullName", "type": "function", "functionId": 1},
        {"fieldName": "ignored", "type": "function", "functionId": 99},
    ]
    functions = {1: {"function_name": "full", "function_logic": {"type": "concatenate", "fields": ["first", "last"]}}}

    written = await evaluator.apply_mappings(payload, mappings, functions)

    assert written == 2
    assert payload["orders"][0]["fullName"] == "Ada L"
    assert payload["orders"][1]["fullName"] == "Alan T"
    assert "ignored" not in payload["orders"][0]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_apply_mappings_skips_empty_results():
    """Test empty results are not written"""
    evaluator = FieldFunctionEvaluator()
    payload = {"name": ""}
    functions = {1: {"function_name": "upper", "function_logic": {"type": "uppercase", "field": "name"}}}

    written = await evaluator.apply_mappings(payload, [{"fieldName": "upperName", "functionId": 1}], functions)

    assert written == 0
    assert "upperName" not in payload
