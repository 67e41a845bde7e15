import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from fastapi import Depends
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stepwise.core.database import get_db
from stepwise.models.db.executions import Execution
from stepwise.models.db.users import User
from stepwise.models.db.workflows import Workflow, WorkflowStep
from stepwise.models.enums import ACTIVE_EXECUTION_STATUSES, ExecutionStatus
from stepwise.models.schemas.workflows import (
    StepReorder,
    WorkflowCreate,
    WorkflowStepCreate,
    WorkflowStepUpdate,
    WorkflowUpdate,
)
from stepwise.services.executions.helpers import compute_completion_rate, compute_duration_minutes, utcnow
from stepwise.services.workflows.helpers import check_step_graph, validate_step_payloads
from stepwise.utils.exception import (
    AccessDeniedError,
    ConflictError,
    DatabaseError,
    NotFoundError,
    ValidationError,
)
from stepwise.utils.logging.otel_logger import logger
from stepwise.utils.validation import unwrap, validate_with


class WorkflowService:
    def __init__(self, db: Session = Depends(get_db)):
        self.db = db

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error while trying to {action}: {str(e)}")
            raise DatabaseError(f"A database error occurred while trying to {action}.")

    def _get_workflow(self, workflow_id: UUID, user: User) -> Workflow:
        workflow = self.db.get(Workflow, workflow_id)
        if not workflow:
            raise NotFoundError("Workflow not found")
        if not user.is_admin and workflow.user_id != user.user_id:
            raise AccessDeniedError("You do not have access to this workflow")
        return workflow

    def _execution_count(self, workflow_id: UUID, statuses=None) -> int:
        query = select(func.count(Execution.id)).where(Execution.workflow_id == workflow_id)
        if statuses:
            query = query.where(Execution.status.in_([s.value for s in statuses]))
        return self.db.scalar(query) or 0

    def _ensure_unfrozen(self, workflow: Workflow) -> None:
        if self._execution_count(workflow.id):
            raise ConflictError(
                "Workflow steps cannot change once executions reference the workflow; duplicate it instead"
            )

    def _build_steps(self, steps: Sequence[WorkflowStepCreate]) -> List[WorkflowStep]:
        unwrap(validate_step_payloads(steps), "Invalid workflow steps")
        now = utcnow()
        ids_by_order = {step.order: uuid.uuid4() for step in steps}
        return [
            WorkflowStep(
                id=ids_by_order[step.order],
                name=step.name,
                description=step.description,
                order=step.order,
                is_required=step.is_required,
                step_type=step.step_type.value,
                estimated_time=step.estimated_time,
                dependencies=[str(ids_by_order[dep]) for dep in step.dependencies],
                step_metadata=step.metadata,
                created_at=now,
                updated_at=now,
            )
            for step in sorted(steps, key=lambda s: s.order)
        ]

    def create_workflow(self, user: User, payload: WorkflowCreate) -> Workflow:
        now = utcnow()
        workflow = Workflow(
            user_id=user.user_id,
            name=payload.name,
            description=payload.description,
            category=payload.category,
            tags=list(payload.tags),
            is_active=payload.is_active,
            workflow_metadata=payload.metadata,
            created_at=now,
            updated_at=now,
        )
        workflow.steps = self._build_steps(payload.steps)
        self.db.add(workflow)
        self._commit("create the workflow")
        self.db.refresh(workflow)
        logger.info(f"Workflow {workflow.id} created with {len(workflow.steps)} step(s) by {user.email}")
        return workflow

    def get_workflow(self, workflow_id: UUID, user: User) -> Workflow:
        return self._get_workflow(workflow_id, user)

    def list_workflows(
        self,
        user: User,
        search: Optional[str] = None,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Workflow], int]:
        query = select(Workflow).where(Workflow.user_id == user.user_id)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(Workflow.name.ilike(pattern), Workflow.description.ilike(pattern)))
        if category:
            query = query.where(Workflow.category == category)
        if is_active is not None:
            query = query.where(Workflow.is_active == is_active)

        total = self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        items = self.db.scalars(
            query.order_by(Workflow.updated_at.desc(), Workflow.id).offset((page - 1) * limit).limit(limit)
        ).all()
        return list(items), total

    def update_workflow(self, workflow_id: UUID, user: User, payload: WorkflowUpdate) -> Workflow:
        """Update workflow fields; a ``steps`` list replaces the step set while it is not frozen."""
        workflow = self._get_workflow(workflow_id, user)
        changes = payload.model_dump(exclude_unset=True, exclude={"steps"})
        if "metadata" in changes:
            workflow.workflow_metadata = changes.pop("metadata")
        for field, value in changes.items():
            setattr(workflow, field, value)

        if payload.steps is not None:
            self._ensure_unfrozen(workflow)
            new_steps = self._build_steps(payload.steps)
            workflow.steps.clear()
            # old rows must be gone before the unique (workflow_id, order) pairs are reused
            self.db.flush()
            workflow.steps.extend(new_steps)

        workflow.updated_at = utcnow()
        self._commit("update the workflow")
        self.db.refresh(workflow)
        return workflow

    def delete_workflow(self, workflow_id: UUID, user: User) -> str:
        """Delete a workflow, or deactivate it when executions still reference it.

        Returns:
            "deleted" or "deactivated"
        """
        workflow = self._get_workflow(workflow_id, user)
        if self._execution_count(workflow.id, ACTIVE_EXECUTION_STATUSES):
            raise ConflictError("Workflow has executions that are still open; finish or cancel them first")

        if self._execution_count(workflow.id):
            workflow.is_active = False
            workflow.updated_at = utcnow()
            self._commit("deactivate the workflow")
            logger.info(f"Workflow {workflow_id} deactivated because executions reference it")
            return "deactivated"

        self.db.delete(workflow)
        self._commit("delete the workflow")
        logger.info(f"Workflow {workflow_id} deleted")
        return "deleted"

    def duplicate_workflow(self, workflow_id: UUID, user: User, name: Optional[str] = None) -> Workflow:
        source = self._get_workflow(workflow_id, user)
        now = utcnow()
        id_map = {str(step.id): uuid.uuid4() for step in source.steps}

        copy = Workflow(
            user_id=user.user_id,
            name=name or f"{source.name} (copy)",
            description=source.description,
            category=source.category,
            tags=list(source.tags or []),
            is_active=True,
            workflow_metadata=dict(source.workflow_metadata) if source.workflow_metadata else None,
            created_at=now,
            updated_at=now,
        )
        copy.steps = [
            WorkflowStep(
                id=id_map[str(step.id)],
                name=step.name,
                description=step.description,
                order=step.order,
                is_required=step.is_required,
                step_type=step.step_type,
                estimated_time=step.estimated_time,
                dependencies=[str(id_map[dep]) for dep in (step.dependencies or []) if dep in id_map],
                step_metadata=dict(step.step_metadata) if step.step_metadata else None,
                created_at=now,
                updated_at=now,
            )
            for step in source.steps
        ]
        self.db.add(copy)
        self._commit("duplicate the workflow")
        self.db.refresh(copy)
        logger.info(f"Workflow {workflow_id} duplicated as {copy.id}")
        return copy

    def get_workflow_stats(self, workflow_id: UUID, user: User) -> Dict[str, Any]:
        workflow = self._get_workflow(workflow_id, user)
        rows = self.db.execute(
            select(Execution.status, func.count(Execution.id))
            .where(Execution.workflow_id == workflow.id)
            .group_by(Execution.status)
        ).all()
        by_status = {status.value: 0 for status in ExecutionStatus}
        by_status.update({status: count for status, count in rows})
        total = sum(by_status.values())
        completed = by_status[ExecutionStatus.COMPLETED.value]

        finished = self.db.execute(
            select(Execution.started_at, Execution.completed_at).where(
                Execution.workflow_id == workflow.id,
                Execution.status == ExecutionStatus.COMPLETED.value,
            )
        ).all()
        durations = [d for d in (compute_duration_minutes(s, c) for s, c in finished) if d is not None]
        last_run = self.db.scalar(
            select(func.max(Execution.created_at)).where(Execution.workflow_id == workflow.id)
        )

        return {
            "workflow_id": str(workflow.id),
            "step_count": len(workflow.steps),
            "required_step_count": sum(1 for step in workflow.steps if step.is_required),
            "total_executions": total,
            "executions_by_status": by_status,
            "completion_rate": compute_completion_rate(completed, total),
            "average_duration_minutes": round(sum(durations) / len(durations), 2) if durations else None,
            "last_execution_at": last_run,
        }

    # steps

    def list_steps(self, workflow_id: UUID, user: User) -> List[WorkflowStep]:
        return list(self._get_workflow(workflow_id, user).steps)

    def _get_step(self, workflow: Workflow, step_id: UUID) -> WorkflowStep:
        for step in workflow.steps:
            if step.id == step_id:
                return step
        raise NotFoundError("Workflow step not found")

    def _validate_graph(self, workflow: Workflow, overrides: Dict[str, List[str]]) -> None:
        graph = {str(step.id): list(step.dependencies or []) for step in workflow.steps}
        graph.update(overrides)
        unwrap(validate_with(graph, check_step_graph), "Invalid step dependencies")

    def add_step(self, workflow_id: UUID, user: User, payload: WorkflowStepCreate) -> WorkflowStep:
        """Append a step; its ``dependencies`` are orders of existing steps."""
        workflow = self._get_workflow(workflow_id, user)
        self._ensure_unfrozen(workflow)

        ids_by_order = {step.order: str(step.id) for step in workflow.steps}
        if payload.order in ids_by_order:
            raise ValidationError(f"Step order {payload.order} is already used", errors=["order"])
        missing = [dep for dep in payload.dependencies if dep not in ids_by_order]
        if missing:
            raise ValidationError(f"Unknown dependency step order(s): {missing}", errors=["dependencies"])

        now = utcnow()
        step = WorkflowStep(
            id=uuid.uuid4(),
            name=payload.name,
            description=payload.description,
            order=payload.order,
            is_required=payload.is_required,
            step_type=payload.step_type.value,
            estimated_time=payload.estimated_time,
            dependencies=[ids_by_order[dep] for dep in payload.dependencies],
            step_metadata=payload.metadata,
            created_at=now,
            updated_at=now,
        )
        workflow.steps.append(step)
        workflow.updated_at = now
        self._commit("add the workflow step")
        self.db.refresh(step)
        return step

    def update_step(self, workflow_id: UUID, step_id: UUID, user: User, payload: WorkflowStepUpdate) -> WorkflowStep:
        workflow = self._get_workflow(workflow_id, user)
        self._ensure_unfrozen(workflow)
        step = self._get_step(workflow, step_id)

        changes = payload.model_dump(exclude_unset=True)
        if "dependencies" in changes:
            deps = [str(dep) for dep in changes.pop("dependencies") or []]
            self._validate_graph(workflow, {str(step.id): deps})
            step.dependencies = deps
        if "metadata" in changes:
            step.step_metadata = changes.pop("metadata")
        if changes.get("step_type") is not None:
            changes["step_type"] = changes["step_type"].value
        for field, value in changes.items():
            setattr(step, field, value)

        step.updated_at = utcnow()
        self._commit("update the workflow step")
        self.db.refresh(step)
        return step

    def delete_step(self, workflow_id: UUID, step_id: UUID, user: User) -> None:
        workflow = self._get_workflow(workflow_id, user)
        self._ensure_unfrozen(workflow)
        step = self._get_step(workflow, step_id)

        removed = str(step.id)
        for other in workflow.steps:
            if other is not step and removed in (other.dependencies or []):
                other.dependencies = [dep for dep in other.dependencies if dep != removed]
        workflow.steps.remove(step)
        workflow.updated_at = utcnow()
        self._commit("delete the workflow step")

    def reorder_steps(self, workflow_id: UUID, user: User, payload: StepReorder) -> List[WorkflowStep]:
        """Renumber steps 1..n following ``payload.step_ids``, which must name every step once."""
        workflow = self._get_workflow(workflow_id, user)
        self._ensure_unfrozen(workflow)

        steps_by_id = {step.id: step for step in workflow.steps}
        if len(payload.step_ids) != len(set(payload.step_ids)) or set(payload.step_ids) != set(steps_by_id):
            raise ValidationError("step_ids must list every step of the workflow exactly once")

        # park orders out of the way so the unique constraint holds between flushes
        for index, step in enumerate(workflow.steps, start=1):
            step.order = -index
        self.db.flush()

        now = utcnow()
        for order, step_id in enumerate(payload.step_ids, start=1):
            steps_by_id[step_id].order = order
            steps_by_id[step_id].updated_at = now
        workflow.updated_at = now
        self._commit("reorder the workflow steps")
        self.db.expire(workflow, ["steps"])
        return list(workflow.steps)
