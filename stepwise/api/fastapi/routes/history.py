from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from stepwise.api.fastapi.middlewares.auth import get_current_user
from stepwise.core.config import settings
from stepwise.models.db.users import User
from stepwise.models.enums import ExecutionStatus
from stepwise.models.schemas.history import HistoryBatchDelete, HistoryFilters, HistoryPage, SortField
from stepwise.services.history.history_service import HistoryService
from stepwise.utils.response import paginated_response, success_response

router = APIRouter(
    prefix="/history",
    tags=["History"],
)


def history_filters(
    workflow_id: Optional[UUID] = None,
    status: Optional[ExecutionStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    has_review: Optional[bool] = None,
    search: Optional[str] = None,
) -> HistoryFilters:
    return HistoryFilters(
        workflow_id=workflow_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        has_review=has_review,
        search=search,
    )


@router.get("/executions")
async def get_execution_history(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    sort_by: SortField = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    filters: HistoryFilters = Depends(history_filters),
    current_user: User = Depends(get_current_user),
    history_service: HistoryService = Depends(HistoryService),
):
    """Filtered, paginated execution history with durations and completion rates"""
    paging = HistoryPage(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)
    items, total = history_service.get_execution_history(current_user, filters, paging)
    return paginated_response(items, page, limit, total)


@router.post("/executions/batch-delete")
async def batch_delete_executions(
    payload: HistoryBatchDelete,
    current_user: User = Depends(get_current_user),
    history_service: HistoryService = Depends(HistoryService),
):
    deleted = history_service.batch_delete_executions(payload.execution_ids, current_user)
    return success_response({"deleted": deleted}, f"{deleted} execution(s) deleted")


@router.get("/executions/{execution_id}")
async def get_execution_detail(
    execution_id: UUID,
    current_user: User = Depends(get_current_user),
    history_service: HistoryService = Depends(HistoryService),
):
    return success_response(history_service.get_execution_detail(execution_id, current_user))


@router.get("/stats")
async def get_history_stats(
    current_user: User = Depends(get_current_user),
    history_service: HistoryService = Depends(HistoryService),
):
    return success_response(history_service.get_stats(current_user))


@router.get("/trends")
async def get_history_trends(
    months: int = Query(6, ge=1, le=36),
    current_user: User = Depends(get_current_user),
    history_service: HistoryService = Depends(HistoryService),
):
    return success_response(history_service.get_trends(current_user, months))


@router.get("/aggregate/{group_by}")
async def get_aggregated_history(
    group_by: Literal["workflow", "status", "month", "week"],
    filters: HistoryFilters = Depends(history_filters),
    current_user: User = Depends(get_current_user),
    history_service: HistoryService = Depends(HistoryService),
):
    return success_response(history_service.get_aggregated(current_user, group_by, filters))


@router.get("/export")
async def export_history(
    format: Literal["json", "csv"] = "json",
    include_steps: bool = False,
    include_reviews: bool = True,
    filters: HistoryFilters = Depends(history_filters),
    current_user: User = Depends(get_current_user),
    history_service: HistoryService = Depends(HistoryService),
):
    """Export the filtered history as JSON or as a CSV download"""
    exported = history_service.export(current_user, format, filters, include_steps, include_reviews)
    if format == "csv":
        filename = f"executions_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"
        return Response(
            content=exported,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return success_response(exported)
