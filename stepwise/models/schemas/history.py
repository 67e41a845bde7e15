from uuid import UUID
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Literal, Optional

from stepwise.models.enums import ExecutionStatus

SortField = Literal["created_at", "started_at", "completed_at", "updated_at", "title", "status", "priority", "progress"]


class HistoryFilters(BaseModel):
    workflow_id: Optional[UUID] = None
    status: Optional[ExecutionStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    has_review: Optional[bool] = None
    search: Optional[str] = None


class HistoryPage(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    sort_by: SortField = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


class HistoryBatchDelete(BaseModel):
    execution_ids: List[UUID] = Field(..., min_length=1)
