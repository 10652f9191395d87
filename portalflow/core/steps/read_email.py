"""
read_email step

Fills fields from three kinds of mappings:
- hardcoded: literal value
- function: {{path}} template resolved against the context
- ai: extracted from the email subject/body in one batched AI call

Every value is cast to the mapping's dataType, then written to the
context root and to extractedData.
"""

import logging
import re
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

from .base import StepExecutor, StepResult, StepServices, register_step
from ..context import utc_now
from ..nodes import StepNode, StepType
from ..providers.model_provider import parse_json_response, text_part
from ..templates import resolve_template

logger = logging.getLogger(__name__)

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")
_FALLBACK_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%Y %H:%M", "%m/%d/%Y %H:%M:%S", "%Y/%m/%d", "%b %d %Y", "%B %d, %Y")


def parse_datetime(text: str) -> Optional[datetime]:
    """Parse ISO 8601, RFC 2822 or a few common US formats; None if unparseable."""
    candidate = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        pass
    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_number(text: str) -> Optional[float]:
    try:
        number = float(text)
    except ValueError:
        return None
    if number != number:
        return None
    return int(number) if number.is_integer() and "." not in text and "e" not in text.lower() else number


def cast_value(raw: Any, data_type: str) -> Any:
    """
    Cast a raw field value to a mapping data type.

    Examples:
        >>> cast_value("2024-01-05T10:00:00Z", "date_only")
        '2024-01-05'
        >>> cast_value("yes", "boolean")
        True
        >>> cast_value("ab-12_3", "rin")
        'AB123'
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        text = "true" if raw else "false"
    elif isinstance(raw, float) and raw.is_integer():
        text = str(int(raw))
    else:
        text = str(raw).strip()

    if data_type == "number":
        return None if text == "" else _to_number(text)

    if data_type == "integer":
        match = _LEADING_INT_RE.match(text)
        return int(match.group(1)) if match else None

    if data_type == "boolean":
        return text in ("true", "1", "yes")

    if data_type == "date_only":
        if text == "":
            return None
        parsed = parse_datetime(text)
        if parsed is None:
            return text
        return (_as_utc(parsed) if parsed.tzinfo else parsed).strftime("%Y-%m-%d")

    if data_type == "datetime":
        if text == "":
            return None
        parsed = parse_datetime(text)
        if parsed is None:
            return text
        return _as_utc(parsed).strftime("%Y-%m-%dT%H:%M:%S.") + f"{_as_utc(parsed).microsecond // 1000:03d}Z"

    if data_type == "rin":
        return _NON_ALNUM_RE.sub("", text).upper()

    return text


def build_extraction_prompt(mappings: List[Dict[str, Any]], subject: str, body: str) -> str:
    field_descriptions = "\n".join(
        f'- "{m["fieldName"]}" ({m.get("dataType") or "string"}): {m.get("value") or ""} '
        f'[Source: {"EMAIL SUBJECT" if m.get("location") == "subject" else "EMAIL BODY"}]'
        for m in mappings
    )
    return (
        "You are a data extraction assistant. Extract the following fields from the provided email content.\n\n"
        f"EMAIL SUBJECT:\n{subject}\n\n"
        f"EMAIL BODY:\n{body}\n\n"
        f"FIELDS TO EXTRACT:\n{field_descriptions}\n\n"
        "RULES:\n"
        "- Return ONLY a valid JSON object with the field names as keys and extracted values.\n"
        "- For each field, use the instruction and source location to find the correct value.\n"
        "- If a field cannot be found, use null as the value.\n"
        "- For number/integer types, return numeric values (not strings).\n"
        "- For boolean types, return true or false.\n"
        "- For date_only types, return in YYYY-MM-DD format.\n"
        "- For datetime types, return in ISO 8601 format.\n"
        "- For rin types, return alphanumeric characters only in uppercase.\n\n"
        "Return ONLY the JSON object, no markdown formatting, no code blocks, no extra text."
    )


@register_step(StepType.READ_EMAIL)
class ReadEmailStep(StepExecutor):
    """
    Config:
        emailFieldMappings: [{fieldName, type: hardcoded | function | ai, value, location, dataType}]

    Logs "<label> - Hardcoded & Function Fields" and, when AI fields
    exist, "<label> - AI Extraction".
    """

    logs_own_steps = True

    async def execute(self, node: StepNode, run, services: StepServices) -> StepResult:
        mappings = [m for m in (node.config.get("emailFieldMappings") or []) if isinstance(m, dict)]
        if not mappings:
            logger.info("No email field mappings configured, skipping")
            return StepResult(output={"skipped": True, "reason": "No email field mappings configured"})

        context = run.context
        results: Dict[str, Any] = {}

        hardcoded = [m for m in mappings if m.get("type") == "hardcoded"]
        functions = [m for m in mappings if m.get("type") == "function"]
        ai_fields = [m for m in mappings if m.get("type") == "ai"]

        started_at, started = utc_now(), time.monotonic()
        for mapping in hardcoded:
            if mapping.get("fieldName"):
                results[mapping["fieldName"]] = cast_value(mapping.get("value"), mapping.get("dataType") or "string")
        for mapping in functions:
            if mapping.get("fieldName"):
                resolved = resolve_template(mapping.get("value") or "", context.view())
                results[mapping["fieldName"]] = cast_value(resolved, mapping.get("dataType") or "string")

        run.log_substep(
            node, "Hardcoded & Function Fields", "completed", started_at, started,
            {"hardcodedCount": len(hardcoded), "functionCount": len(functions)},
            {"results": dict(results)},
        )

        if ai_fields:
            provider = services.require("ai_provider")
            started_at, started = utc_now(), time.monotonic()
            subject = context.get("emailSubject") or ""
            body = context.get("emailBody") or ""

            logger.info(f"Calling {provider.get_model_name()} for {len(ai_fields)} AI field(s)")
            response_text = await provider.generate([text_part(build_extraction_prompt(ai_fields, subject, body))])
            ai_result = parse_json_response(response_text)
            if not isinstance(ai_result, dict):
                ai_result = {}

            for mapping in ai_fields:
                if mapping.get("fieldName"):
                    results[mapping["fieldName"]] = cast_value(
                        ai_result.get(mapping["fieldName"]), mapping.get("dataType") or "string"
                    )

            run.log_substep(
                node, "AI Extraction", "completed", started_at, started,
                {
                    "aiMappingCount": len(ai_fields),
                    "model": provider.get_model_name(),
                    "emailSubjectLength": len(subject),
                    "emailBodyLength": len(body),
                },
                {
                    "aiResponse": ai_result,
                    "extractedFields": {m["fieldName"]: results.get(m["fieldName"]) for m in ai_fields if m.get("fieldName")},
                },
            )

        extracted = context.extracted_data(create=True)
        for field_name, value in results.items():
            context.set(field_name, value)
            extracted[field_name] = value

        logger.info(f"Read email set {len(results)} field(s)")

        return StepResult(output={
            "fieldsExtracted": len(results),
            "fields": results,
            "aiFieldCount": len(ai_fields),
            "hardcodedFieldCount": len(hardcoded),
            "functionFieldCount": len(functions),
        })
