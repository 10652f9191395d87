"""
Imaging Models
Document filing: buckets, document types, filed documents, barcode
patterns and the manual indexing queue
"""

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, Boolean, ForeignKey

from ..core.context import utc_now
from . import Base


class ImagingBucket(Base):
    __tablename__ = "imaging_buckets"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    # Public base URL; document URLs are <url>/<storage_path>
    url = Column(String(500), nullable=False, default="")
    created_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self):
        return f"<ImagingBucket(id={self.id}, name='{self.name}')>"


class ImagingDocumentType(Base):
    __tablename__ = "imaging_document_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<ImagingDocumentType(id={self.id}, name='{self.name}')>"


class ImagingDocument(Base):
    __tablename__ = "imaging_documents"

    id = Column(Integer, primary_key=True, index=True)
    bucket_id = Column(Integer, ForeignKey("imaging_buckets.id"), nullable=False, index=True)
    document_type_id = Column(Integer, ForeignKey("imaging_document_types.id"), nullable=False, index=True)
    detail_line_id = Column(String(255), nullable=False, index=True)
    bill_number = Column(String(255), nullable=True)
    storage_path = Column(String(1000), nullable=False)
    original_filename = Column(String(500), nullable=True)
    file_size = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self):
        return f"<ImagingDocument(id={self.id}, detail_line_id='{self.detail_line_id}')>"


class ImagingBarcodePattern(Base):
    """
    Barcode pattern used to file scanned documents.

    Template mode: pattern_template such as "{documentType}-{detailLineId}".
    Fixed prefix mode: fixed_document_type names the type and the barcode
    must start with it.
    """
    __tablename__ = "imaging_barcode_patterns"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    pattern_template = Column(String(500), nullable=True)
    separator = Column(String(10), nullable=False, default="-")
    fixed_document_type = Column(String(255), nullable=True)
    bucket_id = Column(Integer, ForeignKey("imaging_buckets.id"), nullable=True)
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class UnindexedQueueItem(Base):
    """Document waiting for manual indexing."""
    __tablename__ = "imaging_unindexed_queue"

    id = Column(Integer, primary_key=True, index=True)
    bucket_id = Column(Integer, ForeignKey("imaging_buckets.id"), nullable=True)
    storage_path = Column(String(1000), nullable=False)
    original_filename = Column(String(500), nullable=True)
    file_size = Column(Integer, nullable=True)
    detected_barcodes = Column(JSON, nullable=True)
    # manual, email, sftp
    source_type = Column(String(50), nullable=False, default="manual")
    # pending, indexed
    status = Column(String(50), nullable=False, default="pending")
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)
