"""
ai_decision step

Looks up candidate records through an API profile and picks the one that
matches a source record built from the context:

1. Source Field Resolution: {{ }} templates into a flat source object
2. API Lookup: profile base URL + path + query string, bearer auth
3. AI Matching: single candidate shortcut, or an AI call returning
   {matchIndex, confidence, reason, matchedFields} with the index
   verified against matchedFields

Each phase writes its own "<label> - <phase>" step log.
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional

from .api import build_endpoint_path, build_query_params, join_url
from .base import StepExecutor, StepResult, StepServices, register_step
from ..context import ContextManager, utc_now
from ..exceptions import ApiCallError, NoMatchError
from ..nodes import StepNode, StepType
from ..providers.model_provider import parse_json_response, text_part
from ..templates import get_value_by_path, resolve_template, set_value_by_path

logger = logging.getLogger(__name__)

MAX_LOGGED_CANDIDATES = 20
IDENTIFIER_KEY_COUNT = 3


def resolve_source_fields(source_fields: List[Dict[str, Any]], context: Any) -> Dict[str, str]:
    """{label: resolved value}; entries without a label or value are ignored."""
    resolved: Dict[str, str] = {}
    for field in source_fields or []:
        if not isinstance(field, dict) or not field.get("label") or not field.get("value"):
            continue
        resolved[field["label"]] = resolve_template(field["value"], context)
    return resolved


def extract_candidates(response: Any, result_array_path: str) -> List[Any]:
    if result_array_path and result_array_path.strip():
        extracted = get_value_by_path(response, result_array_path)
        if isinstance(extracted, list):
            return extracted
        return [] if extracted is None else [extracted]
    if isinstance(response, list):
        return response
    return [response]


def identifier_keys(candidate: Any) -> List[str]:
    """First keys of a candidate holding non-empty strings."""
    if not isinstance(candidate, dict):
        return []
    keys = [key for key, value in candidate.items() if isinstance(value, str) and value]
    return keys[:IDENTIFIER_KEY_COUNT]


def _normalized(value: Any) -> str:
    return str(value or "").lower().strip()


def _matching_keys(candidate: Any, matched_fields: Dict[str, Any], keys: List[str]) -> int:
    if not isinstance(candidate, dict):
        return 0
    return sum(1 for key in keys if _normalized(candidate.get(key)) == _normalized(matched_fields.get(key)))


def verify_match_index(ai_result: Dict[str, Any], candidates: List[Any], keys: List[str]) -> Dict[str, Any]:
    """
    Check that the record at matchIndex carries the matchedFields values.

    If it does not, move matchIndex to the first candidate matching every
    identifier key, else to the first matching at least max(1, n-1) keys,
    noting the correction in the reason. Mutates and returns ai_result.
    """
    index = ai_result["matchIndex"]
    matched_fields = ai_result.get("matchedFields")
    if not keys or not isinstance(matched_fields, dict) or not 0 <= index < len(candidates):
        return ai_result

    if _matching_keys(candidates[index], matched_fields, keys) == len(keys):
        return ai_result

    logger.warning(f"Record at index {index} does not match matchedFields, searching for the correct record")
    exact = next(
        (i for i, c in enumerate(candidates) if _matching_keys(c, matched_fields, keys) == len(keys)),
        None,
    )
    if exact is not None:
        ai_result["matchIndex"] = exact
        ai_result["reason"] = f"{ai_result.get('reason') or ''} [Index corrected from {index} to {exact}]"
        return ai_result

    threshold = max(1, len(keys) - 1)
    partial = next(
        (i for i, c in enumerate(candidates) if _matching_keys(c, matched_fields, keys) >= threshold),
        None,
    )
    if partial is not None:
        ai_result["matchIndex"] = partial
        ai_result["reason"] = (
            f"{ai_result.get('reason') or ''} [Index corrected from {index} to {partial} via partial match]"
        )
    else:
        logger.warning("Could not find a matching record by fields, keeping the original index")
    return ai_result


def build_matching_prompt(
    source: Dict[str, Any],
    candidates: List[Any],
    keys: List[str],
    instruction: str,
) -> str:
    numbered = [
        {"_index": i, **c} if isinstance(c, dict) else {"_index": i, "value": c}
        for i, c in enumerate(candidates)
    ]
    matched_fields_rule = ""
    if keys:
        quoted = ", ".join(f'"{key}"' for key in keys)
        matched_fields_rule = (
            '   - "matchedFields": an object with the EXACT values of these fields '
            f"copied from the chosen candidate: {quoted}\n"
        )
    instruction_block = f"MATCHING INSTRUCTIONS:\n{instruction}\n" if instruction else ""

    return (
        "You are a data matching assistant. You MUST return exactly ONE match from the candidate list.\n\n"
        'Each candidate has an "_index" field showing its position. Use this to determine the matchIndex.\n\n'
        f"SOURCE RECORD (the record we want to match):\n{json.dumps(source, indent=2, default=str)}\n\n"
        f"CANDIDATE RECORDS ({len(candidates)} total):\n{json.dumps(numbered, indent=2, default=str)}\n\n"
        f"{instruction_block}"
        "RULES:\n"
        "- You MUST select exactly ONE candidate. Never return multiple matches.\n"
        "- If multiple candidates match equally well, select the FIRST one (lowest index).\n"
        '- The "matchIndex" MUST equal the "_index" value of the chosen candidate.\n'
        "- Return ONLY a valid JSON object with exactly these fields:\n"
        '   - "matchIndex": the "_index" value of the single best matching candidate (integer)\n'
        '   - "confidence": a number from 0 to 100 indicating match confidence\n'
        '   - "reason": a brief explanation of why this candidate was chosen\n'
        f"{matched_fields_rule}"
        "If no candidate is a reasonable match, return:\n"
        '   {"matchIndex": -1, "confidence": 0, "reason": "No suitable match found"}\n\n'
        "Return ONLY the JSON object, no markdown formatting, no code blocks, no extra text."
    )


def store_output_variable(context: ContextManager, name: str, value: Any) -> None:
    if not name:
        return
    context.set(name, value)
    extracted = context.extracted_data()
    if extracted is not None:
        extracted[name] = value


def apply_record_mappings(context: ContextManager, record: Any, mappings: Optional[List[Dict[str, Any]]]) -> None:
    """Copy matched record fields into extractedData (or the root) and the root's last segment."""
    for mapping in mappings or []:
        if not mapping.get("responsePath") or not mapping.get("updatePath"):
            continue
        value = get_value_by_path(record, mapping["responsePath"])
        target = context.extracted_data()
        if target is None:
            last = context.set_path(mapping["updatePath"], value)
        else:
            last = set_value_by_path(target, mapping["updatePath"], value)
        if last:
            context.set(last, value)


@register_step(StepType.AI_DECISION)
class AiDecisionStep(StepExecutor):
    """
    Config:
        sourceFields: [{label, value}] with {{ }} templates
        apiSourceType, secondaryApiId, apiPath, httpMethod,
        queryParameterConfig, pathVariableConfig: lookup request
        resultArrayPath: Where the candidate list sits in the response
        aiInstruction: Extra matching guidance for the AI
        returnFieldPath: Field of the matched record to store (record if empty)
        outputVariableName: Context key for the matched value
        skipAiIfSingleResult: Default true
        failOnNoMatch: Default false
        responseDataMappings: [{responsePath, updatePath}] read from the matched record
    """

    records_api_response = True
    logs_own_steps = True

    async def execute(self, node: StepNode, run, services: StepServices) -> StepResult:
        config = node.config
        context = run.context
        view = context.view()

        result_array_path = config.get("resultArrayPath") or ""
        instruction = config.get("aiInstruction") or ""
        return_field_path = config.get("returnFieldPath") or ""
        output_variable = config.get("outputVariableName") or ""
        skip_ai_if_single = config.get("skipAiIfSingleResult") is not False
        fail_on_no_match = bool(config.get("failOnNoMatch"))

        # Source Field Resolution
        started_at, started = utc_now(), time.monotonic()
        source = resolve_source_fields(config.get("sourceFields") or [], view)
        run.log_substep(
            node, "Source Field Resolution", "completed", started_at, started,
            {"sourceFields": config.get("sourceFields") or []},
            {"resolvedSourceFields": source},
        )

        # API Lookup
        started_at, started = utc_now(), time.monotonic()
        source_type = config.get("apiSourceType") or "main"
        profile = services.require("profiles").get_api_profile(source_type, config.get("secondaryApiId"))
        method = str(config.get("httpMethod") or "GET").upper()
        url = join_url(profile.base_url, build_endpoint_path(config, view), build_query_params(config, view))
        logger.info(f"AI decision lookup: {method} {url}")

        headers = {"Content-Type": "application/json", **profile.auth_headers()}
        response = await services.require("http").request(method, url, headers=headers)
        if not response.ok:
            error_text = response.body if isinstance(response.body, str) else json.dumps(response.body, default=str)
            run.log_substep(
                node, "API Lookup", "failed", started_at, started,
                {"url": url, "method": method, "apiSourceType": source_type},
                {"responseStatus": response.status_code, "error": error_text},
                error_message=f"API call failed: {response.status_code}",
            )
            raise ApiCallError(
                f"AI Decision API call failed with status {response.status_code}: {error_text}",
                status_code=response.status_code,
                status_text=response.reason,
                body=response.body,
                output_data={"url": url, "responseStatus": response.status_code, "error": error_text},
            )

        candidates = extract_candidates(response.body, result_array_path)
        logger.info(f"Found {len(candidates)} candidate(s) from API response")
        run.log_substep(
            node, "API Lookup", "completed", started_at, started,
            {"url": url, "method": method, "apiSourceType": source_type, "resultArrayPath": result_array_path},
            {
                "responseStatus": response.status_code,
                "candidateCount": len(candidates),
                "candidates": (
                    candidates if len(candidates) <= MAX_LOGGED_CANDIDATES
                    else f"{len(candidates)} records (truncated)"
                ),
            },
        )

        if not candidates:
            message = "AI Decision: API returned zero candidates. Cannot match."
            logger.error(message)
            if fail_on_no_match:
                raise NoMatchError(message, output_data={"url": url, "method": method, "candidateCount": 0})
            return StepResult(
                output={
                    "url": url,
                    "method": method,
                    "candidateCount": 0,
                    "matchedRecord": None,
                    "matchedValue": None,
                    "aiSkipped": True,
                    "reason": "No candidates returned from API",
                },
                api_response=response.body,
            )

        # AI Matching
        started_at, started = utc_now(), time.monotonic()

        if len(candidates) == 1 and skip_ai_if_single:
            logger.info("Single candidate found, skipping AI")
            matched = candidates[0]
            matched_value = get_value_by_path(matched, return_field_path) if return_field_path else matched
            store_output_variable(context, output_variable, matched_value)
            apply_record_mappings(context, matched, config.get("responseDataMappings"))

            run.log_substep(
                node, "AI Matching", "completed", started_at, started,
                {"candidateCount": 1, "skipAiIfSingleResult": True, "resolvedSourceFields": source},
                {
                    "aiSkipped": True,
                    "reason": "Single candidate - AI skipped",
                    "matchedRecord": matched,
                    "matchedValue": matched_value,
                    "outputVariable": output_variable,
                },
            )
            return StepResult(
                output={
                    "url": url,
                    "method": method,
                    "candidateCount": 1,
                    "aiSkipped": True,
                    "reason": "Single candidate - AI skipped",
                    "matchedRecord": matched,
                    "matchedValue": matched_value,
                    "outputVariable": output_variable,
                },
                api_response=response.body,
            )

        provider = services.require("ai_provider")
        model_name = provider.get_model_name()
        keys = identifier_keys(candidates[0])
        logger.info(f"Calling {model_name} to match against {len(candidates)} candidates")

        response_text = await provider.generate([text_part(build_matching_prompt(source, candidates, keys, instruction))])
        ai_result = parse_json_response(response_text, output_data={"url": url, "candidateCount": len(candidates)})
        if not isinstance(ai_result, dict):
            ai_result = {"reason": str(ai_result)}

        match_index = ai_result.get("matchIndex")
        if isinstance(match_index, float) and match_index.is_integer():
            match_index = int(match_index)
        if not isinstance(match_index, int) or isinstance(match_index, bool):
            logger.warning(f"AI returned non-integer matchIndex ({match_index}), falling back to first candidate")
            match_index = 0
            ai_result["reason"] = f"{ai_result.get('reason') or ''} [Forced to first candidate - invalid matchIndex]"
        ai_result["matchIndex"] = match_index
        ai_result = verify_match_index(ai_result, candidates, keys)
        match_index = ai_result["matchIndex"]

        matching_input = {
            "candidateCount": len(candidates),
            "resolvedSourceFields": source,
            "aiInstruction": instruction,
            "model": model_name,
        }

        if match_index < 0 or match_index >= len(candidates):
            message = f"AI Decision: No confident match found. Reason: {ai_result.get('reason')}"
            logger.warning(message)
            no_match_output = {
                "aiResult": ai_result,
                "matchedRecord": None,
                "matchedValue": None,
                "outputVariable": output_variable,
            }
            run.log_substep(
                node, "AI Matching", "failed" if fail_on_no_match else "completed", started_at, started,
                matching_input, no_match_output,
                error_message=message if fail_on_no_match else None,
            )
            if fail_on_no_match:
                raise NoMatchError(message, output_data={"url": url, "method": method, **no_match_output})

            store_output_variable(context, output_variable, None)
            return StepResult(
                output={
                    "url": url,
                    "method": method,
                    "candidateCount": len(candidates),
                    **no_match_output,
                },
                api_response=response.body,
            )

        matched = candidates[match_index]
        matched_value = get_value_by_path(matched, return_field_path) if return_field_path else matched
        logger.info(f"Matched record index {match_index}")
        store_output_variable(context, output_variable, matched_value)
        apply_record_mappings(context, matched, config.get("responseDataMappings"))

        run.log_substep(
            node, "AI Matching", "completed", started_at, started,
            matching_input,
            {
                "aiResult": ai_result,
                "matchedRecord": matched,
                "matchedValue": matched_value,
                "outputVariable": output_variable,
            },
        )

        return StepResult(
            output={
                "url": url,
                "method": method,
                "candidateCount": len(candidates),
                "aiResult": ai_result,
                "matchedRecord": matched,
                "matchedValue": matched_value,
                "outputVariable": output_variable,
                "model": model_name,
            },
            api_response=response.body,
        )
