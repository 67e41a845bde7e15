from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Dict, List, Optional


class ReviewCreate(BaseModel):
    execution_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    content: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    lessons: Optional[str] = None
    improvements: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_public: bool = False
    metadata: Optional[Dict[str, Any]] = None


class ReviewUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    lessons: Optional[str] = None
    improvements: Optional[str] = None
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


class ReviewRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    execution_id: UUID
    title: str
    content: Optional[str] = None
    rating: Optional[int] = None
    lessons: Optional[str] = None
    improvements: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_public: bool
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="review_metadata")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
