"""
Workflow Models
Database models for workflow graph definitions
"""

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime, Boolean, Float, ForeignKey
from sqlalchemy.orm import relationship

from ..core.context import utc_now
from . import Base


class Workflow(Base):
    """
    Workflow Model

    A directed graph of steps built by the visual editor.
    Nodes and edges are stored as separate rows and deleted with the workflow.
    """
    __tablename__ = "workflows"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)

    # extraction, transformation, imaging
    workflow_type = Column(String(50), nullable=False, default="extraction")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    nodes = relationship("WorkflowNode", back_populates="workflow", cascade="all, delete-orphan")
    edges = relationship("WorkflowEdge", back_populates="workflow", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Workflow(id={self.id}, name='{self.name}')>"


class WorkflowNode(Base):
    """One vertex of a workflow graph (start marker or configured step)."""
    __tablename__ = "workflow_nodes"

    id = Column(String(255), primary_key=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=False, index=True)

    # start, step
    node_type = Column(String(50), nullable=False, default="step")
    step_type = Column(String(100), nullable=True)
    label = Column(String(255), nullable=True)

    # Step-specific configuration, interpreted by the step executor
    # Example: {"fieldPath": "status", "operator": "equals", "expectedValue": "approved"}
    config_json = Column(JSON, nullable=True)

    escape_single_quotes_in_body = Column(Boolean, nullable=False, default=False)
    user_response_template = Column(Text, nullable=True)

    # Editor canvas position
    position_x = Column(Float, nullable=True)
    position_y = Column(Float, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    workflow = relationship("Workflow", back_populates="nodes")

    def __repr__(self):
        return f"<WorkflowNode(id='{self.id}', step_type='{self.step_type}')>"


class WorkflowEdge(Base):
    """Directed, handle-tagged connection between two nodes."""
    __tablename__ = "workflow_edges"

    # Insertion order decides which duplicate edge wins
    row_id = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(255), nullable=False, unique=True, index=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=False, index=True)

    source_node_id = Column(String(255), nullable=False)
    target_node_id = Column(String(255), nullable=False)
    source_handle = Column(String(100), nullable=False, default="default")
    target_handle = Column(String(100), nullable=True)
    label = Column(String(255), nullable=True)
    animated = Column(Boolean, nullable=False, default=False)

    workflow = relationship("Workflow", back_populates="edges")

    def __repr__(self):
        return (
            f"<WorkflowEdge(id='{self.id}', {self.source_node_id}"
            f"::{self.source_handle} -> {self.target_node_id})>"
        )
