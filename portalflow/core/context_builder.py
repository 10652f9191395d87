"""
Context Builder

Builds the initial context of a run, in this order (later wins):
1. Mode seed (request fields plus type details)
2. workflowOnlyData fields (extraction mode)
3. The caller's contextData
4. Payload fields, then the first order's fields (object payloads only)
5. group{N}_<field> values from earlier groups of the same session
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import pytz
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.extraction import ExtractionGroupData

logger = logging.getLogger(__name__)

TIMESTAMP_TIMEZONE = "America/Los_Angeles"


def format_timestamp(now: Optional[datetime] = None) -> str:
    """
    Pacific time as "MM/DD/YYYY, h:mm AM".

    Args:
        now: Aware datetime to format (defaults to the current time)
    """
    local = (now or datetime.now(pytz.utc)).astimezone(pytz.timezone(TIMESTAMP_TIMEZONE))
    hour = local.hour % 12 or 12
    return f"{local:%m/%d/%Y}, {hour}:{local:%M %p}"


def parse_workflow_only_data(raw: Any) -> Dict[str, Any]:
    """Object or JSON text; anything else (or invalid text) gives {}."""
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring workflowOnlyData that is not valid JSON")
            return {}
    return dict(raw) if isinstance(raw, dict) else {}


def _type_value(type_details: Any, name: str) -> Any:
    return getattr(type_details, name, None) if type_details is not None else None


def extraction_seed(request: Any, payload: Any, format_type: str, type_details: Any = None) -> Dict[str, Any]:
    seed = {
        "extractedData": payload,
        "originalExtractedData": request.extracted_data,
        "formatType": format_type,
        "pdfFilename": request.extraction_type_filename or request.pdf_filename,
        "originalPdfFilename": request.original_pdf_filename,
        "extractionTypeFilename": (
            request.page_group_filename_template
            or _type_value(type_details, "filename_template")
            or request.extraction_type_filename
        ),
        "pageGroupFilenameTemplate": request.page_group_filename_template,
        "pdfStoragePath": request.pdf_storage_path,
        "pdfBase64": request.pdf_base64,
        "userId": request.user_id or None,
        "senderEmail": request.sender_email or request.submitter_email or None,
        "submitterEmail": request.submitter_email or None,
        "extractionTypeName": _type_value(type_details, "name") or "Unknown",
        "timestamp": format_timestamp(),
    }
    seed.update(parse_workflow_only_data(request.workflow_only_data))
    return seed


def transformation_seed(request: Any, payload: Any, format_type: str, type_details: Any = None) -> Dict[str, Any]:
    return {
        "extractedData": payload,
        "originalExtractedData": request.extracted_data,
        "formatType": format_type,
        "pdfFilename": request.pdf_filename,
        "transformSetupFilename": request.pdf_filename,
        "originalPdfFilename": request.original_pdf_filename,
        "extractionTypeFilename": (
            request.page_group_filename_template
            or _type_value(type_details, "filename_template")
            or request.extraction_type_filename
        ),
        "pageGroupFilenameTemplate": request.page_group_filename_template,
        "pdfStoragePath": request.pdf_storage_path,
        "pdfBase64": request.pdf_base64,
        "userId": request.user_id or None,
    }


def previous_group_fields(session: Session, session_id: str, group_order: int) -> Dict[str, Any]:
    """group{N}_<field> for every group of the session ordered before group_order."""
    rows = (
        session.query(ExtractionGroupData)
        .filter(
            ExtractionGroupData.session_id == session_id,
            ExtractionGroupData.group_order < group_order,
        )
        .order_by(ExtractionGroupData.group_order.asc())
        .all()
    )
    fields: Dict[str, Any] = {}
    for row in rows:
        for name, value in (row.extracted_fields or {}).items():
            fields[f"group{row.group_order}_{name}"] = value
    return fields


class ContextBuilder:
    """
    Assembles the initial context for one run.

    Example:
        builder = ContextBuilder(session, mode="extraction")
        context = builder.build(request, payload, "JSON", extraction_type)
    """

    def __init__(self, session: Optional[Session] = None, mode: str = "extraction"):
        self.session = session
        self.mode = mode

    def build(self, request: Any, payload: Any, format_type: str, type_details: Any = None) -> Dict[str, Any]:
        if self.mode == "transformation":
            context = transformation_seed(request, payload, format_type, type_details)
        else:
            context = extraction_seed(request, payload, format_type, type_details)

        if isinstance(request.context_data, dict):
            context.update(request.context_data)
            logger.debug(f"Merged incoming contextData keys: {list(request.context_data)}")

        if format_type != "CSV" and isinstance(payload, dict):
            context.update(payload)
            orders = payload.get("orders")
            if isinstance(orders, list) and orders and isinstance(orders[0], dict):
                context.update(orders[0])
                logger.debug(f"Spread first order fields into context: {list(orders[0])}")

        if request.session_id and request.group_order and request.group_order > 1 and self.session is not None:
            try:
                context.update(previous_group_fields(self.session, request.session_id, request.group_order))
            except SQLAlchemyError as e:
                logger.error(f"Failed to retrieve previous group data: {e}")
                self.session.rollback()

        return context
