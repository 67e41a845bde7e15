from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from stepwise.models.enums import StepType


class WorkflowStepBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    order: int = Field(..., ge=1)
    is_required: bool = False
    step_type: StepType = StepType.CHECKLIST
    estimated_time: Optional[int] = Field(None, ge=0, description="Estimated minutes")
    metadata: Optional[Dict[str, Any]] = None


class WorkflowStepCreate(WorkflowStepBase):
    dependencies: List[int] = Field(
        default_factory=list,
        description="Orders of the steps in the same workflow that must be completed first",
    )


class WorkflowStepUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    is_required: Optional[bool] = None
    step_type: Optional[StepType] = None
    estimated_time: Optional[int] = Field(None, ge=0)
    dependencies: Optional[List[UUID]] = None
    metadata: Optional[Dict[str, Any]] = None


class StepReorder(BaseModel):
    step_ids: List[UUID] = Field(..., min_length=1, description="Step ids in their new order")


class WorkflowStepRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workflow_id: UUID
    name: str
    description: Optional[str] = None
    order: int
    is_required: bool
    step_type: str
    estimated_time: Optional[int] = None
    dependencies: List[str] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="step_metadata")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WorkflowCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True
    metadata: Optional[Dict[str, Any]] = None
    steps: List[WorkflowStepCreate] = Field(default_factory=list)


class WorkflowUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None
    steps: Optional[List[WorkflowStepCreate]] = None


class WorkflowDuplicate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)


class WorkflowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_active: bool
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="workflow_metadata")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    steps: List[WorkflowStepRead] = Field(default_factory=list)
