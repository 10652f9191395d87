"""
imaging step: files the run's PDF in the document store, or looks one up.
"""

import logging

from .base import StepExecutor, StepResult, StepServices, register_step
from .files import decode_pdf
from ..exceptions import ExternalCallError, StepConfigurationError
from ..nodes import StepNode, StepType
from ..templates import resolve_template

logger = logging.getLogger(__name__)


@register_step(StepType.IMAGING)
class ImagingStep(StepExecutor):
    """
    Config:
        imagingMode: put (default) | get
        bucketId, documentTypeId: Imaging configuration ids
        detailLineId: Template (unresolved placeholders become blank)
        billNumber, storagePath: Templates (put only)
    """

    async def execute(self, node: StepNode, run, services: StepServices) -> StepResult:
        config = node.config
        context = run.context
        view = context.view()
        mode = config.get("imagingMode") or "put"

        detail_line_id = resolve_template(config.get("detailLineId") or "", view, missing="")
        bucket_id = config.get("bucketId") or ""
        document_type_id = config.get("documentTypeId") or ""

        if not bucket_id or not document_type_id or not detail_line_id:
            raise StepConfigurationError(
                f"Imaging step missing required fields. bucketId: {bucket_id}, "
                f"documentTypeId: {document_type_id}, detailLineId: {detail_line_id}"
            )

        documents = services.require("documents")
        logger.info(f"Imaging {mode}: bucket={bucket_id} type={document_type_id} detail={detail_line_id}")

        try:
            if mode == "get":
                result = await documents.get(bucket_id, document_type_id, detail_line_id)
            else:
                storage_path = config.get("storagePath")
                result = await documents.put(
                    bucket_id,
                    document_type_id,
                    detail_line_id,
                    bill_number=resolve_template(config.get("billNumber") or "", view, missing=""),
                    file_bytes=decode_pdf(context.get("pdfBase64")),
                    filename=(
                        context.get("renamedPdfFilename")
                        or context.get("pdfFilename")
                        or context.get("originalPdfFilename")
                        or ""
                    ),
                    storage_path=resolve_template(storage_path, view, missing="") if storage_path else None,
                )
        except ExternalCallError as e:
            raise ExternalCallError(
                f"Imaging {mode} failed: {e.message}",
                output_data={"imagingMode": mode, "bucketId": bucket_id, "detailLineId": detail_line_id},
            ) from e

        if result.get("documentUrl"):
            context.set("imagingDocumentUrl", result["documentUrl"])
        if result.get("documentId"):
            context.set("imagingDocumentId", result["documentId"])
        if result.get("storagePath"):
            context.set("imagingStoragePath", result["storagePath"])

        return StepResult(output=result)
