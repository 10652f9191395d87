"""
Extraction Models
Database models for extraction/transformation types and their run records
"""

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, ForeignKey

from ..core.context import utc_now
from . import Base


class ExtractionLog(Base):
    """One row per processed document (or page group) in either mode."""
    __tablename__ = "extraction_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=True)
    extraction_type_id = Column(Integer, nullable=True)
    transformation_type_id = Column(Integer, nullable=True)

    pdf_filename = Column(String(500), nullable=True)
    pdf_pages = Column(Integer, nullable=True)

    # processing, success, failed
    extraction_status = Column(String(50), nullable=False, default="processing")
    extracted_data = Column(Text, nullable=True)

    # extraction, transformation
    processing_mode = Column(String(50), nullable=True)

    # Multi-group sessions
    session_id = Column(String(255), nullable=True, index=True)
    group_order = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self):
        return f"<ExtractionLog(id={self.id}, status='{self.extraction_status}')>"


class _TypeMixin:
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)

    # JSON, CSV, XML
    format_type = Column(String(20), nullable=False, default="JSON")
    filename_template = Column(String(500), nullable=True)

    # [{"fieldName": "orders.consignee.postal", "type": "function", "functionId": 3}, ...]
    field_mappings = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)


class ExtractionType(_TypeMixin, Base):
    __tablename__ = "extraction_types"

    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=True)

    def __repr__(self):
        return f"<ExtractionType(id={self.id}, name='{self.name}')>"


class TransformationType(_TypeMixin, Base):
    __tablename__ = "transformation_types"

    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=True)

    def __repr__(self):
        return f"<TransformationType(id={self.id}, name='{self.name}')>"


class ExtractionGroupData(Base):
    """Fields extracted from one group of a multi-group session."""
    __tablename__ = "extraction_group_data"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(255), nullable=False, index=True)
    group_order = Column(Integer, nullable=False)
    extracted_fields = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)


class FieldMappingFunction(Base):
    """
    Reusable field function evaluated before traversal.

    function_logic example:
        {"type": "concatenate", "fields": ["firstName", "lastName"], "separator": " "}
    """
    __tablename__ = "field_mapping_functions"

    id = Column(Integer, primary_key=True, index=True)
    function_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    function_logic = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self):
        return f"<FieldMappingFunction(id={self.id}, name='{self.function_name}')>"
