from typing import Any, Optional

from pydantic import BaseModel


class BaseResponse(BaseModel):
    """Base response model for all API responses"""

    success: bool


class SuccessResponse(BaseResponse):
    success: bool = True
    data: Any = None
    message: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool


class PaginatedResponse(SuccessResponse):
    pagination: Pagination


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseResponse):
    """Error response model for 4xx and 5xx responses"""

    success: bool = False
    error: ErrorDetail
