from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from stepwise.models.enums import ExecutionStatus, Priority, StepStatus


class ExecutionCreate(BaseModel):
    workflow_id: UUID
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    tags: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None
    start_immediately: bool = Field(
        True, description="Create the execution IN_PROGRESS; when false it waits in PENDING"
    )


class ExecutionUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    priority: Optional[Priority] = None
    tags: Optional[List[str]] = None
    due_date: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


class ExecutionFilters(BaseModel):
    status: Optional[ExecutionStatus] = None
    priority: Optional[Priority] = None
    workflow_id: Optional[UUID] = None
    search: Optional[str] = None
    tags: Optional[List[str]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class StepStatusUpdate(BaseModel):
    status: StepStatus
    notes: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class StepComplete(BaseModel):
    notes: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None


class StepReason(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class RecordUpdate(BaseModel):
    notes: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None


class ReviewNotes(BaseModel):
    review_notes: str = Field(..., min_length=1)


class ExecutionRecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    execution_id: UUID
    step_id: UUID
    sequence: int
    status: str
    notes: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    actual_duration: Optional[int] = None
    review_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExecutionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    workflow_id: UUID
    title: Optional[str] = None
    description: Optional[str] = None
    status: str
    priority: str
    progress: int
    tags: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    resumed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="execution_metadata")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExecutionDetail(ExecutionRead):
    records: List[ExecutionRecordRead] = Field(default_factory=list)
