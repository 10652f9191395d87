"""
Field Function Evaluator

Computes derived fields on extracted records before traversal. Each
extraction type may map a field to a reusable FieldMappingFunction whose
function_logic names one of:

- template:       {"template": "{{firstName}} {{lastName}}"}
- concatenate:    {"fields": ["city", "state"], "separator": ", "}
- conditional:    {"conditions": [{"field", "operator", "value", "result"}], "defaultValue"}
- value_map:      {"field": "status", "mappings": {"A": "Active"}, "defaultValue"}
- substring:      {"field": "code", "start": 0, "length": 3}
- uppercase / lowercase: {"field": "name"}
- address_lookup: {"addressFields": [...], "lookupType": "postal_code"} (AI)

Unknown logic types evaluate to None. None and "" results are not written.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from .exceptions import ExternalCallError
from .providers.model_provider import ModelProvider, parse_json_response, text_part
from .retry import with_retry
from .steps.logic import evaluate_condition
from .templates import get_value_by_path, has_placeholders, resolve_template, stringify_value

logger = logging.getLogger(__name__)

ADDRESS_LOOKUP_TYPES = {
    "postal_code": "the postal / ZIP code",
    "city": "the city name",
    "state": "the state or province (two-letter code where one exists)",
    "country": "the country (ISO 3166-1 alpha-2 code)",
    "full_address": "the complete, normalized single-line postal address",
}


def set_field_value(target: Any, field_path: str, value: Any) -> None:
    """
    Write value at a dotted path, creating objects on the way.

    When an intermediate segment is a list, the remaining path is written
    into every element ("items.weightUnit" sets the unit on each item).
    """
    parts = field_path.split(".")
    current = target
    for position, part in enumerate(parts[:-1]):
        child = current.get(part)
        if isinstance(child, list):
            remaining = ".".join(parts[position + 1:])
            for item in child:
                if isinstance(item, dict):
                    set_field_value(item, remaining, value)
            return
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def _text(value: Any) -> str:
    return "" if value is None else stringify_value(value)


def _map_value(value: Any, mappings: Any) -> Any:
    """Case-insensitive lookup in {from: to} or [{from, to}] mappings."""
    key = _text(value).strip().lower()
    if isinstance(mappings, dict):
        pairs: Iterable = mappings.items()
    else:
        pairs = ((m.get("from"), m.get("to")) for m in mappings or [] if isinstance(m, dict))
    for source, target in pairs:
        if _text(source).strip().lower() == key:
            return target
    return None


class FieldFunctionEvaluator:
    """
    Evaluates function_logic documents against one record.

    Args:
        ai_provider: Provider for address_lookup (lookups are skipped without one)
        max_attempts: Attempts for each AI lookup
        sleep: Backoff sleep override passed to with_retry

    Example:
        >>> evaluator = FieldFunctionEvaluator()
        >>> evaluator.evaluate({"type": "concatenate", "fields": ["a", "b"], "separator": "-"}, {"a": "X", "b": "Y"})
        'X-Y'
    """

    def __init__(
        self,
        ai_provider: Optional[ModelProvider] = None,
        max_attempts: int = 3,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.ai_provider = ai_provider
        self.max_attempts = max_attempts
        self.sleep = sleep

    def evaluate(self, logic: Dict[str, Any], record: Any) -> Any:
        """Evaluate a non-AI function; address_lookup returns None here."""
        logic_type = (logic or {}).get("type")

        if logic_type == "template":
            return resolve_template(logic.get("template") or "", record, missing="")

        if logic_type == "concatenate":
            values = [_text(get_value_by_path(record, field)) for field in logic.get("fields") or []]
            separator = logic.get("separator")
            return (" " if separator is None else separator).join(v for v in values if v != "")

        if logic_type == "conditional":
            for condition in logic.get("conditions") or []:
                actual = get_value_by_path(record, condition.get("field") or "")
                if evaluate_condition(actual, condition.get("operator") or "equals", condition.get("value")):
                    return self._literal(condition.get("result"), record)
            return self._literal(logic.get("defaultValue"), record)

        if logic_type == "value_map":
            mapped = _map_value(get_value_by_path(record, logic.get("field") or ""), logic.get("mappings"))
            return mapped if mapped is not None else logic.get("defaultValue")

        if logic_type == "substring":
            text = _text(get_value_by_path(record, logic.get("field") or ""))
            start = int(logic.get("start") or 0)
            length = logic.get("length")
            return text[start:] if length in (None, "") else text[start:start + int(length)]

        if logic_type == "uppercase":
            return _text(get_value_by_path(record, logic.get("field") or "")).upper()

        if logic_type == "lowercase":
            return _text(get_value_by_path(record, logic.get("field") or "")).lower()

        if logic_type != "address_lookup":
            logger.warning(f"Unknown function logic type: {logic_type}")
        return None

    def _literal(self, value: Any, record: Any) -> Any:
        if isinstance(value, str) and has_placeholders(value):
            return resolve_template(value, record, missing="")
        return value

    async def evaluate_async(self, logic: Dict[str, Any], record: Any) -> Any:
        """Evaluate any function, calling the AI provider for address_lookup."""
        if (logic or {}).get("type") == "address_lookup":
            return await self.lookup_address(logic, record)
        return self.evaluate(logic, record)

    async def lookup_address(self, logic: Dict[str, Any], record: Any) -> Optional[str]:
        """
        Ask the AI provider for one component of an address.

        Returns None when no provider is configured, the address is empty,
        or the model reports the value as unknown.
        """
        if self.ai_provider is None:
            logger.warning("Skipping address lookup: no AI provider configured")
            return None

        parts = [_text(get_value_by_path(record, field)).strip() for field in logic.get("addressFields") or []]
        address = ", ".join(part for part in parts if part)
        if not address:
            return None

        lookup_type = logic.get("lookupType") or "postal_code"
        wanted = ADDRESS_LOOKUP_TYPES.get(lookup_type, ADDRESS_LOOKUP_TYPES["postal_code"])
        prompt = (
            f"Given this address:\n{address}\n\n"
            f"Determine {wanted}.\n"
            'Return ONLY a JSON object of the form {"value": "..."}. '
            'Use {"value": null} if it cannot be determined. No markdown, no extra text.'
        )

        provider = self.ai_provider

        async def call() -> Any:
            return parse_json_response(await provider.generate([text_part(prompt)], temperature=0.0, max_tokens=256))

        result = await with_retry(
            call,
            label=f"Address lookup ({lookup_type})",
            max_attempts=self.max_attempts,
            retry_on=(ExternalCallError,),
            sleep=self.sleep,
        )
        value = result.get("value") if isinstance(result, dict) else result
        return None if value is None else _text(value).strip()

    async def apply_mappings(
        self,
        extracted_data: Any,
        function_mappings: List[Dict[str, Any]],
        functions: Dict[Any, Dict[str, Any]],
    ) -> int:
        """
        Evaluate function mappings over each order and write the results.

        Args:
            extracted_data: Payload; its "orders" list is used when present,
                otherwise the payload itself is the single record
            function_mappings: [{fieldName, type: "function", functionId}]
            functions: {functionId: {"function_name", "function_logic"}}

        Returns:
            Number of values written
        """
        if isinstance(extracted_data, dict) and isinstance(extracted_data.get("orders"), list):
            records = extracted_data["orders"]
        else:
            records = [extracted_data]

        written = 0
        for record in records:
            if not isinstance(record, dict):
                continue
            for mapping in function_mappings:
                function = functions.get(mapping.get("functionId"))
                if not function or not function.get("function_logic") or not mapping.get("fieldName"):
                    continue
                result = await self.evaluate_async(function["function_logic"], record)
                if result is None or result == "":
                    continue
                set_field_value(record, mapping["fieldName"], result)
                written += 1
                logger.debug(f"Function '{function.get('function_name')}' -> {mapping['fieldName']} = {result!r}")
        return written
