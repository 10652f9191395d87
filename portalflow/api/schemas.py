"""
Pydantic schemas for API request/response validation
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


# ============================================================================
# WORKFLOW SCHEMAS
# ============================================================================

class WorkflowNodeResponse(BaseModel):
    """Schema for one stored workflow node"""
    id: str
    node_type: str
    step_type: Optional[str]
    label: Optional[str]
    config_json: Optional[Dict[str, Any]]
    escape_single_quotes_in_body: bool
    user_response_template: Optional[str]
    position_x: Optional[float]
    position_y: Optional[float]

    class Config:
        from_attributes = True


class WorkflowEdgeResponse(BaseModel):
    """Schema for one stored workflow edge"""
    id: str
    source_node_id: str
    target_node_id: str
    source_handle: str
    target_handle: Optional[str]
    label: Optional[str]
    animated: bool

    class Config:
        from_attributes = True


class WorkflowSummary(BaseModel):
    """Schema for a workflow without its graph"""
    id: int
    name: str
    description: Optional[str]
    workflow_type: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WorkflowResponse(WorkflowSummary):
    """Schema for a workflow with its graph"""
    nodes: List[WorkflowNodeResponse]
    edges: List[WorkflowEdgeResponse]


class WorkflowListResponse(BaseModel):
    """Schema for listing workflows"""
    workflows: List[WorkflowSummary]
    total: int


# ============================================================================
# QUEUE SCHEMAS
# ============================================================================

class QueuedRunResponse(BaseModel):
    """Schema for a run queued on the workers"""
    task_id: str
    status: str
    workflow_id: int
    mode: str
    message: str


# ============================================================================
# EXECUTION LOG SCHEMAS
# ============================================================================

class ExecutionLogResponse(BaseModel):
    """Schema for execution log response"""
    id: int
    workflow_id: Optional[int]
    extraction_log_id: Optional[int]
    status: str
    processing_mode: Optional[str]
    current_node_id: Optional[str]
    current_node_label: Optional[str]
    context_data: Optional[Dict[str, Any]]
    error_message: Optional[str]
    user_id: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime]
    updated_at: datetime

    class Config:
        from_attributes = True


class StepLogEntry(BaseModel):
    """Schema for step log entry"""
    id: int
    execution_log_id: int
    node_id: str
    node_label: Optional[str]
    step_type: Optional[str]
    status: str
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    duration_ms: Optional[int]
    error_message: Optional[str]
    input_data: Optional[Any]
    output_data: Optional[Any]
    config_json: Optional[Any]
    user_response: Optional[str]

    class Config:
        from_attributes = True


class StepLogListResponse(BaseModel):
    """Schema for the step logs of one execution"""
    execution_log_id: int
    steps: List[StepLogEntry]
    total: int


# ============================================================================
# IMAGING SCHEMAS
# ============================================================================

class ImagingIndexRequest(BaseModel):
    """Schema for barcode indexing of one PDF"""
    pdf_base64: str = Field(..., alias="pdfBase64", min_length=1, description="Base64-encoded PDF")
    original_filename: Optional[str] = Field(None, alias="originalFilename")
    bucket_id: int = Field(..., alias="bucketId", description="Bucket used when no pattern names one")
    source_type: str = Field("upload", alias="sourceType")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "pdfBase64": "JVBERi0xLjQK...",
                "originalFilename": "scan_0001.pdf",
                "bucketId": 1,
            }
        }

