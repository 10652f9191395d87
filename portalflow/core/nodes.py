"""
Node System for the Portalflow Workflow Engine

This module defines the graph elements the interpreter walks:
- StartNode: Entry point of the workflow (exactly one per graph)
- StepNode: A configured step (api_call, conditional_check, imaging, ...)
- EdgeDefinition: Handle-tagged connection between two nodes

All nodes and edges are immutable (frozen) Pydantic models with validation.
A step node's config is an opaque, step-type-specific document interpreted
by the matching step executor.
"""

from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional, Union, Dict, Any

DEFAULT_HANDLE = "default"


class StepType(str, Enum):
    """Step kinds understood by the interpreter."""

    API_CALL = "api_call"
    API_ENDPOINT = "api_endpoint"
    CONDITIONAL_CHECK = "conditional_check"
    RENAME_FILE = "rename_file"
    SFTP_UPLOAD = "sftp_upload"
    EMAIL_ACTION = "email_action"
    MULTIPART_FORM_UPLOAD = "multipart_form_upload"
    AI_DECISION = "ai_decision"
    IMAGING = "imaging"
    READ_EMAIL = "read_email"


# Legacy step type names still stored by older graphs
STEP_TYPE_ALIASES: Dict[str, StepType] = {
    "rename_pdf": StepType.RENAME_FILE,
}


def parse_step_type(value: Optional[str]) -> Optional[StepType]:
    """Map a stored step type string to a StepType, or None if unknown."""
    if not value:
        return None
    if value in STEP_TYPE_ALIASES:
        return STEP_TYPE_ALIASES[value]
    try:
        return StepType(value)
    except ValueError:
        return None


class BaseNode(BaseModel):
    """
    Base class for all workflow nodes.

    All nodes have:
    - id: Unique identifier (assigned by the editor)
    - node_type: start or step
    - label: Human-readable label used in logs
    """

    id: str = Field(..., min_length=1, description="Unique node identifier")
    workflow_id: Optional[int] = Field(None, description="Owning workflow")
    node_type: Literal["start", "step"]
    label: str = Field("", description="Human-readable label")

    class Config:
        frozen = True
        extra = "ignore"

    @field_validator("id")
    @classmethod
    def validate_id_not_empty(cls, v: str) -> str:
        """Ensure ID is not empty or whitespace"""
        if not v.strip():
            raise ValueError("Node ID cannot be empty")
        return v

    @field_validator("label", mode="before")
    @classmethod
    def default_label(cls, v: Any) -> str:
        return v or ""


class StartNode(BaseNode):
    """
    Entry point of the workflow.

    Carries no step type and always routes via its "default" edge.
    """

    node_type: Literal["start"] = "start"


class StepNode(BaseNode):
    """
    A configured workflow step.

    Examples:
        {
            "id": "n2",
            "node_type": "step",
            "step_type": "conditional_check",
            "label": "Is approved?",
            "config_json": {"fieldPath": "status", "operator": "equals", "expectedValue": "approved"}
        }
    """

    node_type: Literal["step"] = "step"
    step_type: str = Field(..., min_length=1, description="Executor kind")
    config_json: Dict[str, Any] = Field(default_factory=dict, description="Step-specific configuration")
    escape_single_quotes_in_body: bool = False
    user_response_template: Optional[str] = None

    @field_validator("config_json", mode="before")
    @classmethod
    def default_config(cls, v: Any) -> Dict[str, Any]:
        return v or {}

    @field_validator("escape_single_quotes_in_body", mode="before")
    @classmethod
    def default_escape(cls, v: Any) -> bool:
        return bool(v)

    @property
    def kind(self) -> Optional[StepType]:
        """Resolved StepType (aliases applied), None for unknown types."""
        return parse_step_type(self.step_type)

    @property
    def config(self) -> Dict[str, Any]:
        return self.config_json


# Type alias for any node type
NodeType = Union[StartNode, StepNode]


class EdgeDefinition(BaseModel):
    """
    Directed connection between two nodes.

    source_handle selects the exit point of the source node ("default",
    or "success"/"failure" for conditional steps). target_handle, label and
    animated are editor cosmetics and play no part in routing.
    """

    id: str = Field(..., min_length=1)
    workflow_id: Optional[int] = None
    source_node_id: str = Field(..., min_length=1)
    target_node_id: str = Field(..., min_length=1)
    source_handle: str = DEFAULT_HANDLE
    target_handle: Optional[str] = None
    label: Optional[str] = None
    animated: bool = False

    class Config:
        frozen = True
        extra = "ignore"

    @field_validator("source_handle", mode="before")
    @classmethod
    def default_handle(cls, v: Any) -> str:
        return v or DEFAULT_HANDLE

    @field_validator("animated", mode="before")
    @classmethod
    def default_animated(cls, v: Any) -> bool:
        return bool(v)


def create_node_from_dict(node_data: Dict[str, Any]) -> NodeType:
    """
    Factory function: Creates the appropriate node type from a dictionary.

    Used by the GraphEngine when loading graphs from the database or JSON.

    Args:
        node_data: Dictionary with node fields (must include 'node_type')

    Returns:
        Node instance of the appropriate type

    Raises:
        ValueError: If node type is unknown or validation fails

    Example:
        >>> node = create_node_from_dict({
        ...     "id": "n1",
        ...     "node_type": "step",
        ...     "step_type": "api_call",
        ...     "config_json": {"url": "https://example.com/orders/{{orderId}}"}
        ... })
        >>> isinstance(node, StepNode)
        True
    """
    node_type = node_data.get("node_type")

    node_classes = {
        "start": StartNode,
        "step": StepNode,
    }

    node_class = node_classes.get(node_type)
    if not node_class:
        raise ValueError(
            f"Unknown node type: '{node_type}'. "
            f"Valid types: {list(node_classes.keys())}"
        )

    try:
        return node_class(**node_data)
    except Exception as e:
        raise ValueError(f"Failed to create {node_type} node: {e}")
