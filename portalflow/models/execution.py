"""
Execution Models
Database models for workflow run audit records
"""

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..core.context import utc_now
from . import Base


class ExecutionLog(Base):
    """
    ExecutionLog Model

    One row per traversal run. Tracks status, the node currently
    executing and a running snapshot of the context.
    """
    __tablename__ = "execution_logs"

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=True, index=True)
    extraction_log_id = Column(Integer, ForeignKey("extraction_logs.id"), nullable=True, index=True)

    # Status: running, completed, failed
    status = Column(String(50), nullable=False, default="running", index=True)

    # extraction, transformation
    processing_mode = Column(String(50), nullable=True)

    current_node_id = Column(String(255), nullable=True)
    current_node_label = Column(String(255), nullable=True)

    # Running context snapshot (JSON)
    context_data = Column(JSON, nullable=True)

    error_message = Column(Text, nullable=True)

    user_id = Column(String(255), nullable=True)
    extraction_type_id = Column(Integer, nullable=True)
    transformation_type_id = Column(Integer, nullable=True)

    started_at = Column(DateTime, default=utc_now, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    step_logs = relationship(
        "StepLog",
        back_populates="execution_log",
        cascade="all, delete-orphan",
        order_by="StepLog.id",
    )

    def __repr__(self):
        return f"<ExecutionLog(id={self.id}, workflow_id={self.workflow_id}, status='{self.status}')>"


class StepLog(Base):
    """
    StepLog Model

    One row per executed, skipped or failed node visit.
    Steps that log their own phases (ai_decision, read_email) write one
    row per phase, labelled "<node label> - <phase>".
    """
    __tablename__ = "step_logs"

    id = Column(Integer, primary_key=True, index=True)
    execution_log_id = Column(Integer, ForeignKey("execution_logs.id"), nullable=False, index=True)
    workflow_id = Column(Integer, nullable=True)

    node_id = Column(String(255), nullable=False, index=True)
    node_label = Column(String(255), nullable=True)
    step_type = Column(String(100), nullable=True)

    # Status: completed, skipped, failed
    status = Column(String(50), nullable=False, index=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    error_message = Column(Text, nullable=True)

    # Example input: {"config": {...}, "extractedData": {...}, "resolvedRequestBody": "..."}
    input_data = Column(JSON, nullable=True)
    output_data = Column(JSON, nullable=True)
    config_json = Column(JSON, nullable=True)

    # Resolved userResponseTemplate
    user_response = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    execution_log = relationship("ExecutionLog", back_populates="step_logs")

    def __repr__(self):
        return f"<StepLog(id={self.id}, node_id='{self.node_id}', status='{self.status}')>"
