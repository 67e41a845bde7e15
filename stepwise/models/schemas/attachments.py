from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional


class AttachmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    execution_record_id: Optional[UUID] = None
    review_id: Optional[UUID] = None
    file_name: str
    original_name: str
    file_type: str
    file_size: int
    mime_type: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    uploaded_at: Optional[datetime] = None


class AttachmentBatchDelete(BaseModel):
    attachment_ids: List[UUID] = Field(..., min_length=1)
