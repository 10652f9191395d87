"""
Models module - SQLAlchemy database models
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Import models after Base is defined to avoid circular imports
from .workflow import Workflow, WorkflowNode, WorkflowEdge
from .execution import ExecutionLog, StepLog
from .extraction import (
    ExtractionLog,
    ExtractionType,
    TransformationType,
    ExtractionGroupData,
    FieldMappingFunction,
)
from .profiles import ApiSettings, SecondaryApiConfig, SftpConfig, EmailConfig
from .imaging import (
    ImagingBucket,
    ImagingDocumentType,
    ImagingDocument,
    ImagingBarcodePattern,
    UnindexedQueueItem,
)

__all__ = [
    "Base",
    "Workflow",
    "WorkflowNode",
    "WorkflowEdge",
    "ExecutionLog",
    "StepLog",
    "ExtractionLog",
    "ExtractionType",
    "TransformationType",
    "ExtractionGroupData",
    "FieldMappingFunction",
    "ApiSettings",
    "SecondaryApiConfig",
    "SftpConfig",
    "EmailConfig",
    "ImagingBucket",
    "ImagingDocumentType",
    "ImagingDocument",
    "ImagingBarcodePattern",
    "UnindexedQueueItem",
]
