"""
API steps

- api_call: inline URL/headers/body templates
- api_endpoint: base URL and bearer token from a named API profile,
  with path variables, query parameters and a body template

Both store the parsed response as the run's last API response and copy
configured response fields into the context.
"""

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

from .base import StepExecutor, StepResult, StepServices, register_step
from ..context import ContextManager
from ..exceptions import ApiCallError, StepConfigurationError
from ..integrations.http_client import HttpResponse
from ..nodes import StepNode, StepType
from ..templates import (
    escape_single_quotes,
    get_value_by_path,
    resolve_path_variables,
    resolve_query_value,
    resolve_template,
)

logger = logging.getLogger(__name__)

METHODS_WITHOUT_BODY = {"GET", "DELETE", "HEAD"}


def parse_headers(raw: Any, context: Any) -> Dict[str, str]:
    """Headers from an object or JSON text, values resolved as templates."""
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring headers that are not valid JSON")
            return {}
    if not isinstance(raw, dict):
        return {}
    return {str(key): resolve_template(value, context) for key, value in raw.items()}


def apply_response_mappings(context: ContextManager, response: Any, mappings: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
    """
    Copy response values into the context.

    Each mapping is {responsePath, updatePath}; missing response values
    are skipped.

    Returns:
        {updatePath: value} for the mappings that were applied
    """
    applied: Dict[str, Any] = {}
    for mapping in mappings or []:
        response_path = mapping.get("responsePath")
        update_path = mapping.get("updatePath")
        if not response_path or not update_path:
            continue
        value = get_value_by_path(response, response_path)
        if value is None:
            logger.debug(f"Response path '{response_path}' not found, skipping mapping")
            continue
        context.set_path(update_path, value)
        applied[update_path] = value
    return applied


def _content_headers(headers: Dict[str, str]) -> Dict[str, str]:
    if not any(key.lower() == "content-type" for key in headers):
        headers["Content-Type"] = "application/json"
    return headers


def _api_error(response: HttpResponse, url: str, method: str) -> ApiCallError:
    return ApiCallError(
        f"API call failed with status {response.status_code}: {response.reason}",
        status_code=response.status_code,
        status_text=response.reason,
        body=response.body,
        output_data={
            "url": url,
            "method": method,
            "responseStatus": response.status_code,
            "statusText": response.reason,
            "responseData": response.body,
            "error": response.body,
        },
    )


@register_step(StepType.API_CALL)
class ApiCallStep(StepExecutor):
    """
    Config:
        method: HTTP method (default POST)
        url: URL template
        headers: Object or JSON text, values templated
        requestBody: Body template
        responseDataMappings: [{responsePath, updatePath}]
    """

    records_api_response = True

    async def execute(self, node: StepNode, run, services: StepServices) -> StepResult:
        config = node.config
        view = run.context.view()
        http = services.require("http")

        method = str(config.get("method") or "POST").upper()
        url = resolve_template(config.get("url") or "", view)
        headers = _content_headers(parse_headers(config.get("headers"), view))

        escape = escape_single_quotes if node.escape_single_quotes_in_body else None
        resolved_body = resolve_template(config["requestBody"], view, escape=escape) if config.get("requestBody") else None

        input_data = {
            "config": config,
            "extractedData": run.context.get("extractedData"),
            "resolvedRequestBody": resolved_body,
        }

        body = None if method in METHODS_WITHOUT_BODY else resolved_body
        response = await http.request(method, url, headers=headers, body=body)
        if not response.ok:
            raise _api_error(response, url, method)

        apply_response_mappings(run.context, response.body, config.get("responseDataMappings"))

        return StepResult(output=response.body, api_response=response.body, input_data=input_data)


def build_endpoint_path(config: Dict[str, Any], context: Any) -> str:
    """API path with explicit overrides applied first, then {x}/${x} from the context."""
    path = config.get("apiPath") or ""
    for name, variable in (config.get("pathVariableConfig") or {}).items():
        if not isinstance(variable, dict) or not variable.get("enabled"):
            continue
        value = resolve_template(variable.get("value") or "", context)
        path = path.replace(f"${{{name}}}", value).replace(f"{{{name}}}", value)
    return resolve_path_variables(path, context)


def build_query_params(config: Dict[str, Any], context: Any) -> Dict[str, str]:
    """Enabled query parameters; $filter values have single quotes doubled."""
    params: Dict[str, str] = {}
    for name, parameter in (config.get("queryParameterConfig") or {}).items():
        if not isinstance(parameter, dict) or not parameter.get("enabled") or not parameter.get("value"):
            continue
        params[name] = resolve_query_value(parameter["value"], context, escape_quotes=name.lower() == "$filter")
    return params


def join_url(base_url: str, path: str, params: Optional[Dict[str, str]] = None) -> str:
    url = base_url.rstrip("/")
    if path:
        url = f"{url}/{path.lstrip('/')}"
    if params:
        url = f"{url}?{urlencode(params, quote_via=quote)}"
    return url


@register_step(StepType.API_ENDPOINT)
class ApiEndpointStep(StepExecutor):
    """
    Config:
        apiSourceType: main | secondary
        secondaryApiId: Secondary profile id
        apiPath: Path with {x} / ${x} variables
        httpMethod: HTTP method (default GET)
        queryParameterConfig: {name: {enabled, value}}
        pathVariableConfig: {name: {enabled, value}}
        requestBodyTemplate: Body template
        responseDataMappings: [{responsePath, updatePath}]
    """

    records_api_response = True

    async def execute(self, node: StepNode, run, services: StepServices) -> StepResult:
        config = node.config
        view = run.context.view()
        http = services.require("http")
        profiles = services.require("profiles")

        profile = profiles.get_api_profile(config.get("apiSourceType") or "main", config.get("secondaryApiId"))
        if not profile.base_url:
            raise StepConfigurationError(
                f"API base URL is not configured for source '{config.get('apiSourceType') or 'main'}'"
            )

        method = str(config.get("httpMethod") or "GET").upper()
        url = join_url(profile.base_url, build_endpoint_path(config, view), build_query_params(config, view))

        headers = {"Content-Type": "application/json", "Accept": "application/json", **profile.auth_headers()}

        body = None
        if method not in METHODS_WITHOUT_BODY and config.get("requestBodyTemplate"):
            escape = escape_single_quotes if node.escape_single_quotes_in_body else None
            body = resolve_template(config["requestBodyTemplate"], view, escape=escape)

        response = await http.request(method, url, headers=headers, body=body)
        if not response.ok:
            raise _api_error(response, url, method)

        apply_response_mappings(run.context, response.body, config.get("responseDataMappings"))

        output = {
            "url": url,
            "method": method,
            "responseStatus": response.status_code,
            "responseData": response.body,
        }
        return StepResult(output=output, api_response=response.body)
