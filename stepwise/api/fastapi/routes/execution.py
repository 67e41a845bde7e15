from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status

from stepwise.api.fastapi.middlewares.auth import get_current_user
from stepwise.core.config import settings
from stepwise.models.db.users import User
from stepwise.models.enums import ExecutionStatus, Priority
from stepwise.models.schemas.executions import (
    ExecutionCreate,
    ExecutionDetail,
    ExecutionFilters,
    ExecutionRead,
    ExecutionRecordRead,
    ExecutionUpdate,
    RecordUpdate,
    ReviewNotes,
    StepComplete,
    StepReason,
    StepStatusUpdate,
)
from stepwise.services.executions.execution_service import ExecutionService
from stepwise.utils.response import paginated_response, success_response

router = APIRouter(
    prefix="/executions",
    tags=["Executions"],
)


@router.post("", status_code=status.HTTP_201_CREATED)
async def start_execution(
    payload: ExecutionCreate,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    """Start an execution of a workflow"""
    execution = execution_service.start_execution(current_user, payload)
    return success_response(ExecutionDetail.model_validate(execution), "Execution started")


@router.get("")
async def list_executions(
    status: Optional[ExecutionStatus] = None,
    priority: Optional[Priority] = None,
    workflow_id: Optional[UUID] = None,
    search: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    filters = ExecutionFilters(
        status=status,
        priority=priority,
        workflow_id=workflow_id,
        search=search,
        tags=tags,
        start_date=start_date,
        end_date=end_date,
    )
    executions, total = execution_service.list_executions(current_user, filters, page, limit)
    return paginated_response([ExecutionRead.model_validate(e) for e in executions], page, limit, total)


@router.get("/stats")
async def get_execution_stats(
    workflow_id: Optional[UUID] = None,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    return success_response(execution_service.get_stats(current_user, workflow_id))


@router.get("/recent")
async def get_recent_executions(
    limit: int = Query(5, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    executions = execution_service.get_recent(current_user, limit)
    return success_response([ExecutionRead.model_validate(e) for e in executions])


@router.get("/in-progress")
async def get_in_progress_executions(
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    executions = execution_service.get_in_progress(current_user)
    return success_response([ExecutionRead.model_validate(e) for e in executions])


@router.get("/upcoming")
async def get_upcoming_executions(
    days: int = Query(7, ge=1, le=365),
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    """Open executions due within the next ``days`` days"""
    executions = execution_service.get_upcoming(current_user, days)
    return success_response([ExecutionRead.model_validate(e) for e in executions])


@router.get("/{execution_id}")
async def get_execution(
    execution_id: UUID,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    execution = execution_service.get_execution(execution_id, current_user)
    return success_response(ExecutionDetail.model_validate(execution))


@router.put("/{execution_id}")
async def update_execution(
    execution_id: UUID,
    payload: ExecutionUpdate,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    execution = execution_service.update_execution(execution_id, current_user, payload)
    return success_response(ExecutionRead.model_validate(execution), "Execution updated")


@router.delete("/{execution_id}")
async def delete_execution(
    execution_id: UUID,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    execution_service.delete_execution(execution_id, current_user)
    return success_response(message="Execution deleted")


@router.post("/{execution_id}/start")
async def begin_execution(
    execution_id: UUID,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    """Move a PENDING execution to IN_PROGRESS"""
    execution = execution_service.begin_execution(execution_id, current_user)
    return success_response(ExecutionRead.model_validate(execution), "Execution started")


@router.post("/{execution_id}/pause")
async def pause_execution(
    execution_id: UUID,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    execution = execution_service.pause_execution(execution_id, current_user)
    return success_response(ExecutionRead.model_validate(execution), "Execution paused")


@router.post("/{execution_id}/resume")
async def resume_execution(
    execution_id: UUID,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    execution = execution_service.resume_execution(execution_id, current_user)
    return success_response(ExecutionRead.model_validate(execution), "Execution resumed")


@router.post("/{execution_id}/complete")
async def complete_execution(
    execution_id: UUID,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    execution = execution_service.complete_execution(execution_id, current_user)
    return success_response(ExecutionRead.model_validate(execution), "Execution completed")


@router.post("/{execution_id}/cancel")
async def cancel_execution(
    execution_id: UUID,
    payload: Optional[StepReason] = Body(None),
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    execution = execution_service.cancel_execution(
        execution_id, current_user, reason=payload.reason if payload else None
    )
    return success_response(ExecutionRead.model_validate(execution), "Execution cancelled")


@router.get("/{execution_id}/records")
async def get_execution_records(
    execution_id: UUID,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    records = execution_service.get_records(execution_id, current_user)
    return success_response([ExecutionRecordRead.model_validate(r) for r in records])


@router.get("/{execution_id}/next-step")
async def get_next_step(
    execution_id: UUID,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    record = execution_service.get_next_step(execution_id, current_user)
    if record is None:
        return success_response(None, "No pending steps")
    return success_response(ExecutionRecordRead.model_validate(record))


@router.put("/{execution_id}/progress")
async def update_progress(
    execution_id: UUID,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    """Recompute the execution's progress from its records"""
    execution = execution_service.update_progress(execution_id, current_user)
    return success_response(ExecutionRead.model_validate(execution), "Progress updated")


@router.put("/{execution_id}/review")
async def add_review_notes(
    execution_id: UUID,
    payload: ReviewNotes,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    execution = execution_service.add_review_notes(execution_id, current_user, payload.review_notes)
    return success_response(ExecutionRead.model_validate(execution), "Review notes saved")


@router.put("/{execution_id}/steps/{step_id}")
async def update_step_status(
    execution_id: UUID,
    step_id: UUID,
    payload: StepStatusUpdate,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    record = execution_service.update_step_status(execution_id, step_id, current_user, payload)
    return success_response(ExecutionRecordRead.model_validate(record), "Step updated")


@router.post("/{execution_id}/records/{record_id}/start")
async def start_step(
    execution_id: UUID,
    record_id: UUID,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    record = execution_service.start_step(execution_id, record_id, current_user)
    return success_response(ExecutionRecordRead.model_validate(record), "Step started")


@router.post("/{execution_id}/records/{record_id}/complete")
async def complete_step(
    execution_id: UUID,
    record_id: UUID,
    payload: Optional[StepComplete] = Body(None),
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    record = execution_service.complete_step(execution_id, record_id, current_user, payload)
    return success_response(ExecutionRecordRead.model_validate(record), "Step completed")


@router.post("/{execution_id}/records/{record_id}/skip")
async def skip_step(
    execution_id: UUID,
    record_id: UUID,
    payload: Optional[StepReason] = Body(None),
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    record = execution_service.skip_step(
        execution_id, record_id, current_user, reason=payload.reason if payload else None
    )
    return success_response(ExecutionRecordRead.model_validate(record), "Step skipped")


@router.post("/{execution_id}/records/{record_id}/fail")
async def fail_step(
    execution_id: UUID,
    record_id: UUID,
    payload: Optional[StepReason] = Body(None),
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    record = execution_service.fail_step(
        execution_id, record_id, current_user, reason=payload.reason if payload else None
    )
    return success_response(ExecutionRecordRead.model_validate(record), "Step failed")


@router.put("/{execution_id}/records/{record_id}")
async def update_record(
    execution_id: UUID,
    record_id: UUID,
    payload: RecordUpdate,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    record = execution_service.update_record(execution_id, record_id, current_user, payload)
    return success_response(ExecutionRecordRead.model_validate(record), "Record updated")


@router.put("/{execution_id}/records/{record_id}/review")
async def add_step_review(
    execution_id: UUID,
    record_id: UUID,
    payload: ReviewNotes,
    current_user: User = Depends(get_current_user),
    execution_service: ExecutionService = Depends(ExecutionService),
):
    record = execution_service.add_step_review(execution_id, record_id, current_user, payload.review_notes)
    return success_response(ExecutionRecordRead.model_validate(record), "Step review saved")
