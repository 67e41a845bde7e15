import math
from typing import Any, Optional

from stepwise.models.schemas.responses import PaginatedResponse, Pagination, SuccessResponse


def build_pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(
        page=page,
        limit=limit,
        total=total,
        pages=math.ceil(total / limit) if limit else 0,
        has_next=page * limit < total,
        has_prev=page > 1,
    )


def success_response(data: Any = None, message: Optional[str] = None) -> SuccessResponse:
    return SuccessResponse(data=data, message=message)


def paginated_response(data: Any, page: int, limit: int, total: int) -> PaginatedResponse:
    return PaginatedResponse(data=data, pagination=build_pagination(page, limit, total))
