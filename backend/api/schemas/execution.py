"""Execution ingestion and inspection schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, List, Optional


class TriggerRequest(BaseModel):
    """Request to start a workflow execution."""

    trigger_data: dict[str, Any] = Field(default_factory=dict, description="Event payload, available as {{trigger.*}}")
    trigger_type: str = Field(default="manual", description="manual, webhook or event")


class CancelRequest(BaseModel):
    reason: str = Field(default="cancelled by operator", max_length=500)


class ExecutionResponse(BaseModel):
    """Execution state."""

    id: str = Field(description="Execution ID")
    workflow_id: str = Field(description="Workflow ID")
    status: str = Field(description="pending, running, waiting, completed, failed")
    trigger_type: str = Field(description="How the execution was started")
    current_node_id: Optional[str] = Field(default=None, description="Node being run or waited on")
    resume_at: Optional[datetime] = Field(default=None, description="When a waiting execution becomes runnable")
    error: Optional[str] = Field(default=None, description="Last error of a failed execution")
    context: dict[str, Any] = Field(default_factory=dict, description="Serialized execution context")
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WorkflowLogResponse(BaseModel):
    """One node attempt."""

    id: str
    execution_id: str
    node_id: str
    node_type: str
    sequence: int
    attempt_number: int
    status: str = Field(description="success, retrying, failed")
    output: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: int = 0
    retry_delay_ms: Optional[int] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class WorkflowLogListResponse(BaseModel):
    execution_id: str
    logs: List[WorkflowLogResponse]
    count: int
