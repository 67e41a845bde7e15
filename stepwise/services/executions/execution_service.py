from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from fastapi import Depends
from sqlalchemy import String, case, cast, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stepwise.core.database import get_db
from stepwise.models.db.executions import Execution, ExecutionRecord
from stepwise.models.db.users import User
from stepwise.models.db.workflows import Workflow, WorkflowStep
from stepwise.models.enums import ExecutionStatus, StepStatus
from stepwise.models.schemas.executions import (
    ExecutionCreate,
    ExecutionFilters,
    ExecutionUpdate,
    RecordUpdate,
    StepComplete,
    StepStatusUpdate,
)
from stepwise.services.attachments.storage import LocalFileStorage, get_file_storage
from stepwise.services.executions.helpers import (
    compute_completion_rate,
    compute_duration_minutes,
    compute_progress,
    count_outstanding_required,
    dependencies_satisfied,
    ensure_step_transition,
    resolve_execution_transition,
    utcnow,
)
from stepwise.services.executions.observers import TransitionObserver, get_transition_observer
from stepwise.utils.exception import (
    AccessDeniedError,
    DatabaseError,
    DependencyNotSatisfiedError,
    EmptyWorkflowError,
    IncompleteRequiredStepsError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
    WorkflowUnavailableError,
)
from stepwise.utils.logging.otel_logger import logger


class ExecutionService:
    """
    Execution lifecycle manager.

    Owns the execution state machine and the per-step record sub-states.
    Every record mutation ends in ``reevaluate_execution_status`` so that an
    IN_PROGRESS execution completes itself once its required steps are done,
    and fails as soon as one of its steps fails.
    """

    def __init__(
        self,
        db: Session = Depends(get_db),
        storage: LocalFileStorage = Depends(get_file_storage),
        observer: TransitionObserver = Depends(get_transition_observer),
    ):
        self.db = db
        self.storage = storage
        self.observer = observer

    # ------------------------------------------------------------------ #
    # loading
    # ------------------------------------------------------------------ #

    def _get_execution(self, execution_id: UUID, user: User) -> Execution:
        execution = self.db.get(Execution, execution_id)
        if not execution or (not user.is_admin and execution.user_id != user.user_id):
            raise NotFoundError("Execution not found or access denied")
        return execution

    def _get_record(self, execution: Execution, record_id: UUID) -> ExecutionRecord:
        for record in execution.records:
            if record.id == record_id:
                return record
        raise NotFoundError("Execution record not found")

    def _get_record_by_step(self, execution: Execution, step_id: UUID) -> ExecutionRecord:
        for record in execution.records:
            if record.step_id == step_id:
                return record
        raise NotFoundError("Execution record not found for this step")

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error while trying to {action}: {str(e)}")
            raise DatabaseError(f"A database error occurred while trying to {action}.")

    # ------------------------------------------------------------------ #
    # execution lifecycle
    # ------------------------------------------------------------------ #

    def start_execution(self, user: User, payload: ExecutionCreate) -> Execution:
        """Create an execution of a workflow together with one PENDING record per step."""
        workflow = self.db.get(Workflow, payload.workflow_id)
        if not workflow or not workflow.is_active:
            raise WorkflowUnavailableError("Workflow not found or disabled")
        if not user.is_admin and workflow.user_id != user.user_id:
            raise AccessDeniedError("You do not have access to this workflow")
        if not workflow.steps:
            raise EmptyWorkflowError("Workflow has no steps to execute")

        now = utcnow()
        status = ExecutionStatus.IN_PROGRESS if payload.start_immediately else ExecutionStatus.PENDING
        execution = Execution(
            user_id=user.user_id,
            workflow_id=workflow.id,
            title=payload.title or workflow.name,
            description=payload.description,
            status=status.value,
            priority=payload.priority.value,
            progress=0,
            tags=list(payload.tags),
            due_date=payload.due_date,
            started_at=now if status == ExecutionStatus.IN_PROGRESS else None,
            execution_metadata=payload.metadata,
            created_at=now,
            updated_at=now,
        )
        execution.records = [
            ExecutionRecord(
                step_id=step.id,
                sequence=step.order,
                status=StepStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            for step in sorted(workflow.steps, key=lambda s: s.order)
        ]
        self.db.add(execution)
        self._commit("start the execution")
        self.db.refresh(execution)

        logger.info(
            f"Execution {execution.id} started for workflow {workflow.id} "
            f"with {len(execution.records)} step(s) by user {user.email}"
        )
        self.observer.execution_transitioned(execution, "NEW", execution.status, reason="created")
        return execution

    def _transition(self, execution: Execution, action: str, reason: Optional[str] = None) -> Execution:
        previous = execution.status
        target = resolve_execution_transition(previous, action)
        now = utcnow()

        execution.status = target.value
        execution.updated_at = now
        if action == "begin":
            execution.started_at = now
        elif action == "pause":
            execution.paused_at = now
        elif action == "resume":
            execution.resumed_at = now
        elif action in ("complete", "cancel", "fail"):
            execution.completed_at = now
        if action == "complete":
            execution.progress = 100

        self._commit(f"{action} the execution")
        self.db.refresh(execution)
        self.observer.execution_transitioned(execution, previous, execution.status, reason=reason)
        return execution

    def begin_execution(self, execution_id: UUID, user: User) -> Execution:
        return self._transition(self._get_execution(execution_id, user), "begin")

    def pause_execution(self, execution_id: UUID, user: User) -> Execution:
        return self._transition(self._get_execution(execution_id, user), "pause")

    def resume_execution(self, execution_id: UUID, user: User) -> Execution:
        return self._transition(self._get_execution(execution_id, user), "resume")

    def cancel_execution(self, execution_id: UUID, user: User, reason: Optional[str] = None) -> Execution:
        return self._transition(self._get_execution(execution_id, user), "cancel", reason=reason)

    def complete_execution(self, execution_id: UUID, user: User) -> Execution:
        """Complete an IN_PROGRESS execution whose required steps are all COMPLETED."""
        execution = self._get_execution(execution_id, user)
        resolve_execution_transition(execution.status, "complete")

        outstanding = count_outstanding_required(
            (record.step.is_required, record.status) for record in execution.records
        )
        if outstanding:
            raise IncompleteRequiredStepsError(outstanding)
        return self._transition(execution, "complete", reason="requested")

    def reevaluate_execution_status(self, execution: Execution) -> Optional[str]:
        """Recompute progress and apply the automatic status moves.

        Only IN_PROGRESS executions move: any FAILED record fails the
        execution; otherwise, when there is at least one required step and
        every required record is COMPLETED, the execution completes.
        The caller commits.

        Returns:
            The reason for the automatic move, or None when the status stayed put
        """
        pairs = [(record.step.is_required, record.status) for record in execution.records]
        execution.progress = compute_progress(pairs)

        if execution.status != ExecutionStatus.IN_PROGRESS.value:
            return None

        if any(status == StepStatus.FAILED.value for _, status in pairs):
            action, reason = "fail", "step failed"
        elif any(is_required for is_required, _ in pairs) and count_outstanding_required(pairs) == 0:
            action, reason = "complete", "required steps completed"
        else:
            return None

        execution.status = resolve_execution_transition(execution.status, action).value
        execution.completed_at = utcnow()
        if action == "complete":
            execution.progress = 100
        return reason

    def update_progress(self, execution_id: UUID, user: User) -> Execution:
        execution = self._get_execution(execution_id, user)
        self._apply_record_change(execution, None, None)
        return execution

    def update_execution(self, execution_id: UUID, user: User, payload: ExecutionUpdate) -> Execution:
        execution = self._get_execution(execution_id, user)
        changes = payload.model_dump(exclude_unset=True)
        if "metadata" in changes:
            execution.execution_metadata = changes.pop("metadata")
        if changes.get("priority") is not None:
            changes["priority"] = changes["priority"].value
        for field, value in changes.items():
            setattr(execution, field, value)
        execution.updated_at = utcnow()
        self._commit("update the execution")
        self.db.refresh(execution)
        return execution

    def add_review_notes(self, execution_id: UUID, user: User, review_notes: str) -> Execution:
        execution = self._get_execution(execution_id, user)
        now = utcnow()
        execution.review_notes = review_notes
        execution.reviewed_at = now
        execution.updated_at = now
        self._commit("save the execution review notes")
        self.db.refresh(execution)
        return execution

    def delete_execution(self, execution_id: UUID, user: User) -> None:
        """Delete an execution after removing the files of every attachment under it."""
        execution = self._get_execution(execution_id, user)
        file_paths = [
            attachment.file_path for record in execution.records for attachment in record.attachments
        ]
        if execution.review:
            file_paths.extend(attachment.file_path for attachment in execution.review.attachments)

        self.db.delete(execution)
        self._commit("delete the execution")

        for path in file_paths:
            self.storage.delete(path)
        logger.info(f"Execution {execution_id} deleted with {len(file_paths)} attachment file(s)")

    # ------------------------------------------------------------------ #
    # step records
    # ------------------------------------------------------------------ #

    def check_dependencies(self, record_id: UUID) -> bool:
        """True iff every dependency of the record's step has a COMPLETED record."""
        record = self.db.get(ExecutionRecord, record_id)
        if not record:
            raise NotFoundError("Execution record not found")
        return self._dependencies_met(record)

    def _dependencies_met(self, record: ExecutionRecord) -> bool:
        status_by_step = {str(r.step_id): r.status for r in record.execution.records}
        return dependencies_satisfied(record.step.dependencies, status_by_step)

    def _require_in_progress(self, execution: Execution) -> None:
        if execution.status != ExecutionStatus.IN_PROGRESS.value:
            raise InvalidStateTransitionError(
                f"Steps can only change while the execution is IN_PROGRESS (currently {execution.status})",
                current=execution.status,
            )

    def _set_step_status(self, record: ExecutionRecord, target: StepStatus, reason: Optional[str] = None) -> None:
        ensure_step_transition(record.status, target)
        now = utcnow()

        if target in (StepStatus.IN_PROGRESS, StepStatus.COMPLETED) and not self._dependencies_met(record):
            raise DependencyNotSatisfiedError(
                f"Step '{record.step.name}' has dependencies that are not completed yet"
            )

        if target == StepStatus.IN_PROGRESS:
            record.started_at = now
            record.completed_at = None
        elif target == StepStatus.PENDING:
            record.started_at = None
        elif target == StepStatus.SKIPPED and record.step.is_required:
            raise InvalidStateTransitionError(
                f"Step '{record.step.name}' is required and cannot be skipped",
                current=record.status,
                attempted=target.value,
            )

        if target in (StepStatus.COMPLETED, StepStatus.SKIPPED, StepStatus.FAILED):
            record.completed_at = now
        if target == StepStatus.COMPLETED:
            record.actual_duration = compute_duration_minutes(record.started_at, now)
        if reason:
            record.notes = reason

        record.status = target.value
        record.updated_at = now

    def _apply_record_change(
        self, execution: Execution, record: Optional[ExecutionRecord], previous_step_status: Optional[str]
    ) -> None:
        previous_status = execution.status
        auto_reason = self.reevaluate_execution_status(execution)
        execution.updated_at = utcnow()

        self._commit("update the execution record")
        self.db.refresh(execution)

        if record is not None and previous_step_status != record.status:
            self.observer.step_transitioned(record, previous_step_status, record.status)
        if previous_status != execution.status:
            logger.info(f"Execution {execution.id} automatically moved to {execution.status} ({auto_reason})")
            self.observer.execution_transitioned(execution, previous_status, execution.status, reason=auto_reason)

    def update_step_status(
        self, execution_id: UUID, step_id: UUID, user: User, payload: StepStatusUpdate
    ) -> ExecutionRecord:
        """Set a record's status (and optionally notes/data) addressed by its workflow step."""
        execution = self._get_execution(execution_id, user)
        record = self._get_record_by_step(execution, step_id)
        previous = record.status

        if payload.status.value != record.status:
            self._require_in_progress(execution)
            self._set_step_status(record, payload.status)
        if payload.notes is not None:
            record.notes = payload.notes
        if payload.data is not None:
            record.data = payload.data
        record.updated_at = utcnow()

        self._apply_record_change(execution, record, previous)
        return record

    def _record_action(
        self,
        execution_id: UUID,
        record_id: UUID,
        user: User,
        target: StepStatus,
        reason: Optional[str] = None,
    ) -> ExecutionRecord:
        execution = self._get_execution(execution_id, user)
        record = self._get_record(execution, record_id)
        self._require_in_progress(execution)
        previous = record.status
        self._set_step_status(record, target, reason=reason)
        self._apply_record_change(execution, record, previous)
        return record

    def start_step(self, execution_id: UUID, record_id: UUID, user: User) -> ExecutionRecord:
        return self._record_action(execution_id, record_id, user, StepStatus.IN_PROGRESS)

    def complete_step(
        self, execution_id: UUID, record_id: UUID, user: User, payload: Optional[StepComplete] = None
    ) -> ExecutionRecord:
        execution = self._get_execution(execution_id, user)
        record = self._get_record(execution, record_id)
        self._require_in_progress(execution)
        previous = record.status
        self._set_step_status(record, StepStatus.COMPLETED)
        if payload:
            if payload.notes is not None:
                record.notes = payload.notes
            if payload.data is not None:
                record.data = payload.data
            if payload.result is not None:
                record.result = payload.result
        self._apply_record_change(execution, record, previous)
        return record

    def skip_step(
        self, execution_id: UUID, record_id: UUID, user: User, reason: Optional[str] = None
    ) -> ExecutionRecord:
        return self._record_action(execution_id, record_id, user, StepStatus.SKIPPED, reason=reason)

    def fail_step(
        self, execution_id: UUID, record_id: UUID, user: User, reason: Optional[str] = None
    ) -> ExecutionRecord:
        return self._record_action(execution_id, record_id, user, StepStatus.FAILED, reason=reason)

    def update_record(self, execution_id: UUID, record_id: UUID, user: User, payload: RecordUpdate) -> ExecutionRecord:
        """Edit notes and payloads of a record without touching its status."""
        execution = self._get_execution(execution_id, user)
        record = self._get_record(execution, record_id)
        for field, value in payload.model_dump(exclude_unset=True).items():
            setattr(record, field, value)
        record.updated_at = utcnow()
        self._commit("update the execution record")
        self.db.refresh(record)
        return record

    def add_step_review(self, execution_id: UUID, record_id: UUID, user: User, review_notes: str) -> ExecutionRecord:
        execution = self._get_execution(execution_id, user)
        record = self._get_record(execution, record_id)
        record.review_notes = review_notes
        record.updated_at = utcnow()
        self._commit("save the step review notes")
        self.db.refresh(record)
        return record

    # ------------------------------------------------------------------ #
    # reads
    # ------------------------------------------------------------------ #

    def get_execution(self, execution_id: UUID, user: User) -> Execution:
        return self._get_execution(execution_id, user)

    def get_records(self, execution_id: UUID, user: User) -> List[ExecutionRecord]:
        return list(self._get_execution(execution_id, user).records)

    def get_next_step(self, execution_id: UUID, user: User) -> Optional[ExecutionRecord]:
        """First record still open whose dependencies are met, in step order."""
        execution = self._get_execution(execution_id, user)
        for record in execution.records:
            if record.status == StepStatus.IN_PROGRESS.value:
                return record
            if record.status == StepStatus.PENDING.value and self._dependencies_met(record):
                return record
        return None

    def _owned(self, user: User):
        return select(Execution).where(Execution.user_id == user.user_id)

    def list_executions(
        self, user: User, filters: ExecutionFilters, page: int = 1, limit: int = 10
    ) -> Tuple[List[Execution], int]:
        query = self._owned(user)
        if filters.status:
            query = query.where(Execution.status == filters.status.value)
        if filters.priority:
            query = query.where(Execution.priority == filters.priority.value)
        if filters.workflow_id:
            query = query.where(Execution.workflow_id == filters.workflow_id)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.where(or_(Execution.title.ilike(pattern), Execution.description.ilike(pattern)))
        for tag in filters.tags or []:
            query = query.where(cast(Execution.tags, String).like(f'%"{tag}"%'))
        if filters.start_date:
            query = query.where(Execution.created_at >= filters.start_date)
        if filters.end_date:
            query = query.where(Execution.created_at <= filters.end_date)
        if filters.start_date and filters.end_date and filters.start_date > filters.end_date:
            raise ValidationError("start_date must not be after end_date")

        total = self.db.scalar(select(func.count()).select_from(query.subquery()))
        items = self.db.scalars(
            query.order_by(Execution.created_at.desc(), Execution.id).offset((page - 1) * limit).limit(limit)
        ).all()
        return list(items), total or 0

    def get_recent(self, user: User, limit: int = 5) -> List[Execution]:
        return list(
            self.db.scalars(self._owned(user).order_by(Execution.updated_at.desc()).limit(limit)).all()
        )

    def get_in_progress(self, user: User) -> List[Execution]:
        query = self._owned(user).where(Execution.status == ExecutionStatus.IN_PROGRESS.value)
        return list(self.db.scalars(query.order_by(Execution.started_at.desc())).all())

    def get_upcoming(self, user: User, days: int = 7) -> List[Execution]:
        now = utcnow()
        query = self._owned(user).where(
            Execution.due_date.is_not(None),
            Execution.due_date >= now,
            Execution.due_date <= now + timedelta(days=days),
            Execution.status.in_([ExecutionStatus.IN_PROGRESS.value, ExecutionStatus.PAUSED.value]),
        )
        return list(self.db.scalars(query.order_by(Execution.due_date.asc())).all())

    def get_stats(self, user: User, workflow_id: Optional[UUID] = None) -> Dict[str, Any]:
        """Execution totals, status breakdown, durations and per-step completion."""
        base = [Execution.user_id == user.user_id]
        if workflow_id:
            base.append(Execution.workflow_id == workflow_id)

        status_rows = self.db.execute(
            select(Execution.status, func.count()).where(*base).group_by(Execution.status)
        ).all()
        breakdown = {status.value: 0 for status in ExecutionStatus}
        breakdown.update({status: count for status, count in status_rows})
        total = sum(breakdown.values())
        completed = breakdown[ExecutionStatus.COMPLETED.value]

        finished = self.db.execute(
            select(Execution.started_at, Execution.completed_at).where(
                *base,
                Execution.status == ExecutionStatus.COMPLETED.value,
                Execution.started_at.is_not(None),
                Execution.completed_at.is_not(None),
            )
        ).all()
        durations = [compute_duration_minutes(started, done) for started, done in finished]
        average_duration = round(sum(durations) / len(durations), 2) if durations else None

        step_rows = self.db.execute(
            select(
                WorkflowStep.id,
                WorkflowStep.name,
                func.count(ExecutionRecord.id),
                func.sum(case((ExecutionRecord.status == StepStatus.COMPLETED.value, 1), else_=0)),
                func.avg(ExecutionRecord.actual_duration),
            )
            .join(ExecutionRecord.execution)
            .join(ExecutionRecord.step)
            .where(*base)
            .group_by(WorkflowStep.id, WorkflowStep.name)
        ).all()
        step_stats = [
            {
                "step_id": str(step_id),
                "step_name": name,
                "total": count,
                "completed": int(done or 0),
                "completion_rate": compute_completion_rate(int(done or 0), count),
                "average_duration": round(float(avg), 2) if avg is not None else None,
            }
            for step_id, name, count, done, avg in step_rows
        ]

        return {
            "total_executions": total,
            "completed_executions": completed,
            "completion_rate": compute_completion_rate(completed, total),
            "status_breakdown": breakdown,
            "average_duration_minutes": average_duration,
            "step_stats": step_stats,
        }
