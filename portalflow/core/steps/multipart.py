"""
multipart_form_upload step: posts a multipart body of file and text parts.
"""

import json
import logging
from typing import Any, Dict, List

from .api import join_url
from .base import StepExecutor, StepResult, StepServices, register_step
from .files import decode_pdf, sanitize_filename
from .read_email import cast_value
from ..exceptions import ApiCallError, StepConfigurationError
from ..integrations.http_client import FilePart
from ..nodes import StepNode, StepType
from ..templates import get_value_by_path, has_placeholders, resolve_template, set_value_by_path

logger = logging.getLogger(__name__)


def build_json_part(part: Dict[str, Any], context: Any) -> str:
    """
    JSON text part: the part's JSON value with each field mapping applied.

    Mappings: {fieldName, type: hardcoded | variable, value, dataType}.
    fieldName accepts dotted paths with [i] indexes.
    """
    raw = part.get("value") or "{}"
    try:
        document = json.loads(raw) if isinstance(raw, str) else raw
    except json.JSONDecodeError:
        logger.warning(f"Form part '{part.get('name')}' value is not valid JSON, starting from an empty object")
        document = {}
    if not isinstance(document, (dict, list)):
        document = {}

    for mapping in part.get("fieldMappings") or []:
        field_name = mapping.get("fieldName")
        if not field_name:
            continue
        value = mapping.get("value")
        if mapping.get("type") == "variable":
            text = str(value or "")
            value = resolve_template(text, context) if has_placeholders(text) else get_value_by_path(context, text)
        value = cast_value(value, mapping.get("dataType") or "string")
        set_value_by_path(document, field_name, value)

    return json.dumps(document)


@register_step(StepType.MULTIPART_FORM_UPLOAD)
class MultipartFormUploadStep(StepExecutor):
    """
    Config:
        apiSourceType: main | secondary | none
        secondaryApiId: Secondary profile id
        url: URL template (relative URLs join the profile base URL)
        filenameTemplate: Template for file part filenames
        formParts: [{name, type: file | text, value, contentType, fieldMappings}]
    """

    async def execute(self, node: StepNode, run, services: StepServices) -> StepResult:
        config = node.config
        context = run.context
        view = context.view()

        url = resolve_template(config.get("url") or "", view)
        headers: Dict[str, str] = {}
        source_type = config.get("apiSourceType") or "none"
        if source_type != "none":
            profile = services.require("profiles").get_api_profile(source_type, config.get("secondaryApiId"))
            headers.update(profile.auth_headers())
            if not url.lower().startswith(("http://", "https://")):
                if not profile.base_url:
                    raise StepConfigurationError(f"API base URL is not configured for source '{source_type}'")
                url = join_url(profile.base_url, url)
        if not url:
            raise StepConfigurationError("Multipart upload has no URL")

        filename = sanitize_filename(resolve_template(config.get("filenameTemplate") or "", view))
        filename = filename or context.get("renamedPdfFilename") or context.get("pdfFilename") or "document.pdf"

        files: List[FilePart] = []
        parts_summary: List[Dict[str, Any]] = []
        for part in config.get("formParts") or []:
            name = part.get("name")
            if not name:
                continue
            if part.get("type") == "file":
                content = decode_pdf(context.get("pdfBase64"))
                content_type = part.get("contentType") or "application/pdf"
                files.append((name, (filename, content, content_type)))
                parts_summary.append({"name": name, "type": "file", "filename": filename, "size": len(content)})
                continue

            if part.get("fieldMappings"):
                text = build_json_part(part, view)
                content_type = part.get("contentType") or "application/json"
            else:
                text = resolve_template(part.get("value") or "", view)
                content_type = part.get("contentType") or "text/plain"
            # Text parts go as (None-filename) file tuples so each keeps its content type
            files.append((name, (None, text.encode("utf-8"), content_type)))
            parts_summary.append({"name": name, "type": "text", "value": text})

        response = await services.require("http").request("POST", url, headers=headers, files=files)
        if not response.ok:
            raise ApiCallError(
                f"Multipart upload failed with status {response.status_code}: {response.reason}",
                status_code=response.status_code,
                status_text=response.reason,
                body=response.body,
                output_data={
                    "url": url,
                    "responseStatus": response.status_code,
                    "statusText": response.reason,
                    "responseData": response.body,
                    "parts": parts_summary,
                },
            )

        return StepResult(output={
            "url": url,
            "responseStatus": response.status_code,
            "responseData": response.body,
            "parts": parts_summary,
        })
