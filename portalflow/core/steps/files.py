"""
File steps

- rename_file (legacy name rename_pdf): computes output filenames from a
  template; no I/O
- sftp_upload: uploads the PDF or the serialized extracted data
"""

import base64
import binascii
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, Optional

from .base import StepExecutor, StepResult, StepServices, register_step
from ..exceptions import StepConfigurationError
from ..nodes import StepNode, StepType
from ..templates import get_value_by_path, has_placeholders, stringify_value

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")
_ILLEGAL_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_KNOWN_EXTENSION_RE = re.compile(r"\.(pdf|json|csv|xml)$", re.IGNORECASE)

FILE_TYPES = ("pdf", "csv", "json", "xml")


def sanitize_filename(name: str) -> str:
    """Drop characters that are illegal in filenames and surrounding whitespace."""
    return _ILLEGAL_FILENAME_CHARS_RE.sub("", name).strip()


def strip_known_extension(name: str) -> str:
    return _KNOWN_EXTENSION_RE.sub("", name)


def resolve_filename_template(template: str, context: Any, api_response: Any) -> str:
    """
    Resolve {{path}} against the context, then the last API response.

    "response.<path>" reads explicitly from the API response.
    Unresolved placeholders are kept.
    """

    def replace(match: "re.Match[str]") -> str:
        path = match.group(1).strip()
        value = None
        if not path.startswith("response."):
            value = get_value_by_path(context, path)
        if value is None and api_response is not None:
            response_path = path[len("response."):] if path.startswith("response.") else path
            value = get_value_by_path(api_response, response_path)
        if value is None:
            return match.group(0)
        return stringify_value(value)

    return _PLACEHOLDER_RE.sub(replace, template or "")


def payload_extension(format_type: Optional[str]) -> str:
    fmt = (format_type or "JSON").lower()
    return fmt if fmt in ("json", "csv", "xml") else "json"


@register_step(StepType.RENAME_FILE)
class RenameFileStep(StepExecutor):
    """
    Config:
        filenameTemplate: {{path}} template over context and last API response
        fallbackFilename: Used when the template resolves empty or incompletely
        appendTimestamp: Append _YYYYMMDD_HHMMSS
        renamePdf (default true), renameCsv, renameJson, renameXml
    """

    async def execute(self, node: StepNode, run, services: StepServices) -> StepResult:
        config = node.config
        context = run.context

        template = config.get("filenameTemplate") or ""
        resolved = resolve_filename_template(template, context.view(), run.last_api_response)

        fallback = config.get("fallbackFilename")
        used_fallback = False
        if (not resolved.strip() or has_placeholders(resolved)) and fallback:
            logger.warning(f"Filename template '{template}' did not fully resolve, using fallback '{fallback}'")
            resolved = resolve_filename_template(fallback, context.view(), run.last_api_response)
            used_fallback = True

        base_name = strip_known_extension(sanitize_filename(resolved))
        if not base_name:
            raise StepConfigurationError(
                f"Filename template '{template}' resolved to an empty filename and no fallback is configured"
            )

        if config.get("appendTimestamp"):
            base_name = f"{base_name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        enabled = {
            "pdf": config.get("renamePdf", True) is not False,
            "csv": bool(config.get("renameCsv")),
            "json": bool(config.get("renameJson")),
            "xml": bool(config.get("renameXml")),
        }

        output: Dict[str, Any] = {"baseFilename": base_name, "usedFallback": used_fallback}
        for file_type in FILE_TYPES:
            if enabled[file_type]:
                key = f"renamed{file_type.capitalize()}Filename"
                filename = f"{base_name}.{file_type}"
                context.set(key, filename)
                output[key] = filename

        data_extension = payload_extension(run.format_type)
        if any(enabled[t] for t in ("csv", "json", "xml")):
            primary = f"{base_name}.{data_extension}"
        else:
            primary = f"{base_name}.pdf"

        context.set("renamedFilename", primary)
        context.set("actualFilename", primary)
        output["renamedFilename"] = primary

        logger.info(f"Renamed output to {primary}")
        return StepResult(output=output)


def serialize_extracted_data(extracted_data: Any, format_type: Optional[str]) -> bytes:
    """JSON pretty-printed; CSV/XML text as-is."""
    if isinstance(extracted_data, (bytes, bytearray)):
        return bytes(extracted_data)
    if isinstance(extracted_data, str):
        return extracted_data.encode("utf-8")
    if payload_extension(format_type) == "json":
        return json.dumps(extracted_data, indent=2, default=str).encode("utf-8")
    return stringify_value(extracted_data).encode("utf-8")


def decode_pdf(pdf_base64: Optional[str]) -> bytes:
    """
    Decode the base64 PDF payload.

    Raises:
        StepConfigurationError: If there is no payload or it is not base64
    """
    if not pdf_base64:
        raise StepConfigurationError("No PDF payload (pdfBase64) available in context")
    try:
        return base64.b64decode(pdf_base64, validate=False)
    except (binascii.Error, ValueError) as e:
        raise StepConfigurationError(f"pdfBase64 is not valid base64: {e}") from e


@register_step(StepType.SFTP_UPLOAD)
class SftpUploadStep(StepExecutor):
    """
    Config:
        uploadType: pdf | json | csv | xml (default follows the format type)
        sftpConfigId: SFTP profile (default profile otherwise)
        sftpPathOverride: Remote directory template
        useApiResponseForFilename / filenameSourcePath: Filename from the last API response
        fallbackFilename: Filename when nothing else applies
        pdfUploadStrategy: Recorded in the output (default all_pages_in_group)
    """

    async def execute(self, node: StepNode, run, services: StepServices) -> StepResult:
        config = node.config
        context = run.context
        data_extension = payload_extension(run.format_type)
        upload_type = str(config.get("uploadType") or data_extension).lower()
        if upload_type not in FILE_TYPES:
            raise StepConfigurationError(f"Unsupported uploadType '{upload_type}'")

        if upload_type == "pdf":
            payload = decode_pdf(context.get("pdfBase64"))
        else:
            payload = serialize_extracted_data(context.get("extractedData"), run.format_type)

        filename = self._filename(config, run, upload_type)

        profile = services.require("profiles").get_sftp_profile(config.get("sftpConfigId"))
        override = config.get("sftpPathOverride")
        if override:
            directory = resolve_filename_template(override, context.view(), run.last_api_response)
        else:
            directory = profile.directory_for(upload_type) or "/"

        remote_path = await services.require("sftp").upload(profile, directory, filename, payload)

        if upload_type == data_extension:
            context.set("actualFilename", filename)

        return StepResult(output={
            "uploadType": upload_type,
            "remotePath": remote_path,
            "filename": filename,
            "bytesUploaded": len(payload),
            "pdfUploadStrategy": config.get("pdfUploadStrategy") or "all_pages_in_group",
        })

    def _filename(self, config: Dict[str, Any], run, upload_type: str) -> str:
        context = run.context

        if config.get("useApiResponseForFilename") and config.get("filenameSourcePath"):
            value = get_value_by_path(run.last_api_response, config["filenameSourcePath"])
            if value not in (None, ""):
                name = sanitize_filename(stringify_value(value))
                return f"{strip_known_extension(name)}.{upload_type}"

        renamed = context.get(f"renamed{upload_type.capitalize()}Filename")
        if renamed:
            return renamed

        pdf_filename = context.get("pdfFilename")
        if pdf_filename:
            return f"{strip_known_extension(pdf_filename)}.{upload_type}"

        fallback = config.get("fallbackFilename")
        if fallback:
            return f"{strip_known_extension(sanitize_filename(fallback))}.{upload_type}"

        return f"document.{upload_type}"
