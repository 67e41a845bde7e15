from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status

from stepwise.api.fastapi.middlewares.auth import get_current_user
from stepwise.core.config import settings
from stepwise.models.db.users import User
from stepwise.models.schemas.workflows import (
    StepReorder,
    WorkflowCreate,
    WorkflowDuplicate,
    WorkflowRead,
    WorkflowStepCreate,
    WorkflowStepRead,
    WorkflowStepUpdate,
    WorkflowUpdate,
)
from stepwise.services.workflows.workflow_service import WorkflowService
from stepwise.utils.response import paginated_response, success_response

router = APIRouter(
    prefix="/workflows",
    tags=["Workflows"],
)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_workflow(
    payload: WorkflowCreate,
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    """Create a workflow together with its steps"""
    workflow = workflow_service.create_workflow(current_user, payload)
    return success_response(WorkflowRead.model_validate(workflow), "Workflow created")


@router.get("")
async def list_workflows(
    search: Optional[str] = None,
    category: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    workflows, total = workflow_service.list_workflows(current_user, search, category, is_active, page, limit)
    return paginated_response([WorkflowRead.model_validate(w) for w in workflows], page, limit, total)


@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: UUID,
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    workflow = workflow_service.get_workflow(workflow_id, current_user)
    return success_response(WorkflowRead.model_validate(workflow))


@router.put("/{workflow_id}")
async def update_workflow(
    workflow_id: UUID,
    payload: WorkflowUpdate,
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    workflow = workflow_service.update_workflow(workflow_id, current_user, payload)
    return success_response(WorkflowRead.model_validate(workflow), "Workflow updated")


@router.delete("/{workflow_id}")
async def delete_workflow(
    workflow_id: UUID,
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    """Delete a workflow; one that executions still reference is deactivated instead"""
    outcome = workflow_service.delete_workflow(workflow_id, current_user)
    return success_response({"result": outcome}, f"Workflow {outcome}")


@router.post("/{workflow_id}/duplicate", status_code=status.HTTP_201_CREATED)
async def duplicate_workflow(
    workflow_id: UUID,
    payload: Optional[WorkflowDuplicate] = Body(None),
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    workflow = workflow_service.duplicate_workflow(workflow_id, current_user, payload.name if payload else None)
    return success_response(WorkflowRead.model_validate(workflow), "Workflow duplicated")


@router.get("/{workflow_id}/stats")
async def get_workflow_stats(
    workflow_id: UUID,
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    return success_response(workflow_service.get_workflow_stats(workflow_id, current_user))


@router.get("/{workflow_id}/steps")
async def list_steps(
    workflow_id: UUID,
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    steps = workflow_service.list_steps(workflow_id, current_user)
    return success_response([WorkflowStepRead.model_validate(s) for s in steps])


@router.post("/{workflow_id}/steps", status_code=status.HTTP_201_CREATED)
async def add_step(
    workflow_id: UUID,
    payload: WorkflowStepCreate,
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    step = workflow_service.add_step(workflow_id, current_user, payload)
    return success_response(WorkflowStepRead.model_validate(step), "Step added")


@router.put("/{workflow_id}/steps/reorder")
async def reorder_steps(
    workflow_id: UUID,
    payload: StepReorder,
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    steps = workflow_service.reorder_steps(workflow_id, current_user, payload)
    return success_response([WorkflowStepRead.model_validate(s) for s in steps], "Steps reordered")


@router.put("/{workflow_id}/steps/{step_id}")
async def update_step(
    workflow_id: UUID,
    step_id: UUID,
    payload: WorkflowStepUpdate,
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    step = workflow_service.update_step(workflow_id, step_id, current_user, payload)
    return success_response(WorkflowStepRead.model_validate(step), "Step updated")


@router.delete("/{workflow_id}/steps/{step_id}")
async def delete_step(
    workflow_id: UUID,
    step_id: UUID,
    current_user: User = Depends(get_current_user),
    workflow_service: WorkflowService = Depends(WorkflowService),
):
    workflow_service.delete_step(workflow_id, step_id, current_user)
    return success_response(message="Step deleted")
