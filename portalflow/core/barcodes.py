"""
Barcode Indexing

Files an incoming PDF by the barcodes printed on it:
1. The PDF is stored under the target bucket
2. The AI provider lists every barcode it can read
3. Each barcode is tried against the active patterns, by priority
4. A match records an ImagingDocument; anything else lands in the
   unindexed queue with the reason

Pattern forms:
- fixed prefix: fixed_document_type="BOL" matches "BOL-12345"
- template:     "{documentType}-{detailLineId}" matches "POD-778-A"
  (the last template segment takes all remaining parts)
"""

import base64
import binascii
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from .exceptions import AIProviderError, AIResponseParseError, StepConfigurationError
from .integrations.storage import FileStorage
from .providers.model_provider import ModelProvider, inline_part, parse_json_response, text_part
from .retry import with_retry
from ..models.imaging import ImagingBarcodePattern, ImagingDocument, ImagingDocumentType, UnindexedQueueItem

logger = logging.getLogger(__name__)

DOCUMENT_TYPE_PLACEHOLDER = "{documentType}"
DETAIL_LINE_PLACEHOLDER = "{detailLineId}"

BARCODE_PROMPT = """Analyze this PDF document and find ALL barcodes (1D and 2D including QR codes, Code 128, Code 39, etc.) visible on any page.

For each barcode found, return its decoded text value.

Return ONLY a JSON array of strings with the barcode values. If no barcodes are found, return an empty array [].

Example response: ["BOL-12345", "Invoice-67890", "POD-11111"]

Return ONLY the JSON array, no other text."""


@dataclass
class BarcodeMatch:
    document_type: str
    detail_line_id: str
    bucket_id: Optional[int]
    pattern_id: Optional[int]


def match_barcode_to_pattern(
    barcode: str,
    pattern: Any,
    document_type_names: Sequence[str],
) -> Optional[BarcodeMatch]:
    """
    Match one barcode against one pattern.

    Args:
        barcode: Decoded barcode text
        pattern: Object with pattern_template, separator, fixed_document_type,
            bucket_id and id (an ImagingBarcodePattern row)
        document_type_names: Known document type names (template mode only)

    Returns:
        BarcodeMatch, or None if the barcode does not fit the pattern
    """
    separator = pattern.separator or "-"
    parts = barcode.split(separator)
    if len(parts) < 2:
        return None

    if pattern.fixed_document_type:
        if parts[0] != pattern.fixed_document_type:
            return None
        detail_line_id = separator.join(parts[1:])
        if not detail_line_id:
            return None
        return BarcodeMatch(pattern.fixed_document_type, detail_line_id, pattern.bucket_id, pattern.id)

    template_parts = (pattern.pattern_template or "").split(separator)
    if DOCUMENT_TYPE_PLACEHOLDER not in template_parts or DETAIL_LINE_PLACEHOLDER not in template_parts:
        return None
    type_index = template_parts.index(DOCUMENT_TYPE_PLACEHOLDER)
    detail_index = template_parts.index(DETAIL_LINE_PLACEHOLDER)
    if len(parts) < max(type_index, detail_index) + 1:
        return None

    document_type = parts[type_index]
    if detail_index == len(template_parts) - 1:
        detail_line_id = separator.join(parts[detail_index:])
    else:
        detail_line_id = parts[detail_index]
    if not document_type or not detail_line_id:
        return None

    if not any(name.lower() == document_type.lower() for name in document_type_names):
        return None

    return BarcodeMatch(document_type, detail_line_id, pattern.bucket_id, pattern.id)


def parse_barcode_list(text: str) -> List[str]:
    """Non-empty strings of a JSON array response; anything unparseable gives []."""
    try:
        parsed = parse_json_response(text)
    except AIResponseParseError:
        logger.warning(f"Failed to parse barcode response: {text!r}")
        return []
    if not isinstance(parsed, list):
        return []
    return [value for value in parsed if isinstance(value, str) and value]


class BarcodeIndexer:
    """
    Indexes PDFs into the imaging document store by barcode.

    Args:
        session: Database session
        storage: File storage for the PDF bytes
        ai_provider: Provider that reads barcodes from the PDF
        max_attempts: Attempts for the barcode scan
        sleep: Backoff sleep override passed to with_retry
    """

    def __init__(
        self,
        session: Session,
        storage: FileStorage,
        ai_provider: Optional[ModelProvider],
        max_attempts: int = 3,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.session = session
        self.storage = storage
        self.ai_provider = ai_provider
        self.max_attempts = max_attempts
        self.sleep = sleep

    async def scan_barcodes(self, pdf_base64: str) -> List[str]:
        if self.ai_provider is None:
            raise StepConfigurationError("No AI provider configured. Set AI_MODEL and the matching API key.")
        provider = self.ai_provider

        async def scan() -> str:
            return await provider.generate([inline_part(pdf_base64, "application/pdf"), text_part(BARCODE_PROMPT)])

        response_text = await with_retry(
            scan,
            label="Barcode scan",
            max_attempts=self.max_attempts,
            retry_on=(AIProviderError,),
            sleep=self.sleep,
        )
        return parse_barcode_list(response_text)

    def _active_patterns(self) -> List[ImagingBarcodePattern]:
        return (
            self.session.query(ImagingBarcodePattern)
            .filter(ImagingBarcodePattern.is_active.is_(True))
            .order_by(ImagingBarcodePattern.priority.asc(), ImagingBarcodePattern.id.asc())
            .all()
        )

    def _document_types(self) -> Dict[str, ImagingDocumentType]:
        rows = self.session.query(ImagingDocumentType).filter(ImagingDocumentType.is_active.is_(True)).all()
        return {row.name.lower(): row for row in rows}

    def _queue(
        self,
        bucket_id: int,
        storage_path: str,
        original_filename: str,
        file_size: int,
        barcodes: List[str],
        source_type: str,
        reason: str,
    ) -> UnindexedQueueItem:
        item = UnindexedQueueItem(
            bucket_id=bucket_id,
            storage_path=storage_path,
            original_filename=original_filename,
            file_size=file_size,
            detected_barcodes=barcodes,
            source_type=source_type,
            status="pending",
            failure_reason=reason,
        )
        self.session.add(item)
        self.session.commit()
        logger.info(f"Queued unindexed document {original_filename}: {reason}")
        return item

    async def index_document(
        self,
        pdf_base64: str,
        original_filename: Optional[str],
        bucket_id: int,
        source_type: str = "upload",
    ) -> Dict[str, Any]:
        """
        Store, scan and file one PDF.

        Returns:
            {success, indexed, documentType?, detailLineId?, documentId?,
             reason?, detectedBarcodes, storagePath}

        Raises:
            StepConfigurationError: Payload is not base64 or no AI provider
            AIProviderError: Barcode scan failed on every attempt
        """
        try:
            pdf_bytes = base64.b64decode(pdf_base64, validate=False)
        except (binascii.Error, ValueError) as e:
            raise StepConfigurationError(f"pdfBase64 is not valid base64: {e}") from e

        filename = original_filename or "document.pdf"
        storage_path = f"imaging/{int(time.time() * 1000)}-{filename}"

        barcodes = await self.scan_barcodes(pdf_base64)
        logger.info(f"Detected {len(barcodes)} barcodes in {filename}: {barcodes}")

        document_types = self._document_types()
        type_names = [row.name for row in document_types.values()]
        patterns = self._active_patterns()

        match: Optional[BarcodeMatch] = None
        for barcode in barcodes:
            match = next(
                (m for m in (match_barcode_to_pattern(barcode, p, type_names) for p in patterns) if m),
                None,
            )
            if match:
                break

        result: Dict[str, Any] = {"success": True, "detectedBarcodes": barcodes, "storagePath": storage_path}

        if match is None:
            reason = "No barcodes detected in document" if not barcodes else "No barcode matched configured patterns"
            await self.storage.write(f"bucket-{bucket_id}", storage_path, pdf_bytes)
            self._queue(bucket_id, storage_path, filename, len(pdf_bytes), barcodes, source_type, reason)
            return {**result, "indexed": False, "reason": reason}

        document_type = document_types.get(match.document_type.lower())
        if document_type is None:
            reason = f'Document type "{match.document_type}" not found in configuration'
            await self.storage.write(f"bucket-{bucket_id}", storage_path, pdf_bytes)
            self._queue(bucket_id, storage_path, filename, len(pdf_bytes), barcodes, source_type, reason)
            return {**result, "indexed": False, "reason": reason}

        target_bucket_id = match.bucket_id or bucket_id
        await self.storage.write(f"bucket-{target_bucket_id}", storage_path, pdf_bytes)

        document = ImagingDocument(
            bucket_id=target_bucket_id,
            document_type_id=document_type.id,
            detail_line_id=match.detail_line_id,
            bill_number="",
            storage_path=storage_path,
            original_filename=filename,
            file_size=len(pdf_bytes),
        )
        self.session.add(document)
        self.session.commit()
        logger.info(f"Indexed {filename} as {match.document_type} / {match.detail_line_id}")

        return {
            **result,
            "indexed": True,
            "documentId": document.id,
            "documentType": match.document_type,
            "detailLineId": match.detail_line_id,
        }
