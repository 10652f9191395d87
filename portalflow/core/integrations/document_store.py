"""
Imaging document store.

Files documents under (bucket, document type, detail line id):
- put: writes the bytes to file storage and records an ImagingDocument
- get: returns the most recently filed document for a key
"""

import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from .storage import FileStorage
from ..exceptions import ExternalCallError
from ...models.imaging import ImagingBucket, ImagingDocument, ImagingDocumentType

logger = logging.getLogger(__name__)


def document_url(bucket: ImagingBucket, storage_path: str) -> str:
    return f"{(bucket.url or '').rstrip('/')}/{storage_path}"


class DocumentStore:
    """Database-backed imaging store writing bytes through FileStorage."""

    def __init__(self, session: Session, storage: FileStorage):
        self.session = session
        self.storage = storage

    def _bucket(self, bucket_id: Any) -> ImagingBucket:
        bucket = self.session.get(ImagingBucket, int(bucket_id))
        if bucket is None:
            raise ExternalCallError(f"Bucket not found: {bucket_id}")
        return bucket

    def _document_type(self, document_type_id: Any) -> ImagingDocumentType:
        document_type = self.session.get(ImagingDocumentType, int(document_type_id))
        if document_type is None:
            raise ExternalCallError(f"Document type not found: {document_type_id}")
        return document_type

    async def put(
        self,
        bucket_id: Any,
        document_type_id: Any,
        detail_line_id: str,
        bill_number: Optional[str],
        file_bytes: bytes,
        filename: Optional[str],
        storage_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        File a document.

        Default storage path: <documentTypeName>/<detailLineId>_<epochMillis>.pdf

        Returns:
            {documentId, storagePath, documentUrl, bucketName, documentTypeName, detailLineId, billNumber}

        Raises:
            ExternalCallError: Unknown bucket or document type, or storage failure
        """
        bucket = self._bucket(bucket_id)
        document_type = self._document_type(document_type_id)

        final_path = storage_path or f"{document_type.name}/{detail_line_id}_{int(time.time() * 1000)}.pdf"
        await self.storage.write(f"bucket-{bucket.id}", final_path, file_bytes)

        document = ImagingDocument(
            bucket_id=bucket.id,
            document_type_id=document_type.id,
            detail_line_id=detail_line_id,
            bill_number=bill_number or "",
            storage_path=final_path,
            original_filename=filename or "",
            file_size=len(file_bytes),
        )
        self.session.add(document)
        self.session.commit()

        logger.info(f"Filed imaging document {document.id} at {final_path}")

        return {
            "documentId": document.id,
            "storagePath": final_path,
            "documentUrl": document_url(bucket, final_path),
            "bucketName": bucket.name,
            "documentTypeName": document_type.name,
            "detailLineId": detail_line_id,
            "billNumber": bill_number or "",
        }

    async def get(self, bucket_id: Any, document_type_id: Any, detail_line_id: str) -> Dict[str, Any]:
        """
        Most recently filed document for the key.

        Raises:
            ExternalCallError: Unknown bucket, or "Document not found"
        """
        bucket = self._bucket(bucket_id)
        document = (
            self.session.query(ImagingDocument)
            .filter(
                ImagingDocument.bucket_id == bucket.id,
                ImagingDocument.document_type_id == int(document_type_id),
                ImagingDocument.detail_line_id == detail_line_id,
            )
            .order_by(ImagingDocument.created_at.desc(), ImagingDocument.id.desc())
            .first()
        )
        if document is None:
            raise ExternalCallError("Document not found")

        return {
            "documentId": document.id,
            "storagePath": document.storage_path,
            "documentUrl": document_url(bucket, document.storage_path),
            "bucketName": bucket.name,
            "detailLineId": document.detail_line_id,
            "billNumber": document.bill_number,
            "originalFilename": document.original_filename,
        }
