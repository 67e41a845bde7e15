from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from fastapi import Depends
from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stepwise.core.database import get_db
from stepwise.models.db.executions import Execution, ExecutionRecord
from stepwise.models.db.users import User
from stepwise.models.db.workflows import Workflow
from stepwise.models.enums import PRIORITY_RANK, ExecutionStatus
from stepwise.models.schemas.history import HistoryFilters, HistoryPage
from stepwise.services.attachments.storage import LocalFileStorage, get_file_storage
from stepwise.services.executions.helpers import (
    as_utc,
    compute_completion_rate,
    compute_duration_ms,
    round_half_up,
    utcnow,
)
from stepwise.services.history.helpers import (
    GROUP_BY_OPTIONS,
    execution_summary,
    month_key,
    week_key,
    write_csv,
)
from stepwise.utils.exception import DatabaseError, NotFoundError, ValidationError
from stepwise.utils.logging.otel_logger import logger

_SORT_COLUMNS = {
    "created_at": Execution.created_at,
    "started_at": Execution.started_at,
    "completed_at": Execution.completed_at,
    "updated_at": Execution.updated_at,
    "title": Execution.title,
    "status": Execution.status,
    "progress": Execution.progress,
    "priority": case(
        {priority.value: rank for priority, rank in PRIORITY_RANK.items()},
        value=Execution.priority,
        else_=0,
    ),
}


class HistoryService:
    """Read-mostly reporting over a user's executions."""

    def __init__(
        self,
        db: Session = Depends(get_db),
        storage: LocalFileStorage = Depends(get_file_storage),
    ):
        self.db = db
        self.storage = storage

    def _activity_time(self):
        return func.coalesce(Execution.started_at, Execution.created_at)

    def _filtered(self, user: User, filters: Optional[HistoryFilters]):
        query = select(Execution).join(Execution.workflow).where(Execution.user_id == user.user_id)
        if not filters:
            return query

        if filters.start_date and filters.end_date and filters.start_date > filters.end_date:
            raise ValidationError("start_date must not be after end_date")
        if filters.workflow_id:
            query = query.where(Execution.workflow_id == filters.workflow_id)
        if filters.status:
            query = query.where(Execution.status == filters.status.value)
        if filters.start_date:
            query = query.where(self._activity_time() >= filters.start_date)
        if filters.end_date:
            query = query.where(self._activity_time() <= filters.end_date)
        if filters.has_review is not None:
            reviewed = or_(Execution.review_notes.is_not(None), Execution.review.has())
            query = query.where(reviewed if filters.has_review else ~reviewed)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.where(
                or_(
                    Execution.title.ilike(pattern),
                    Workflow.name.ilike(pattern),
                    Workflow.description.ilike(pattern),
                    Execution.review_notes.ilike(pattern),
                    Execution.records.any(ExecutionRecord.notes.ilike(pattern)),
                )
            )
        return query

    def get_execution_history(
        self, user: User, filters: HistoryFilters, paging: HistoryPage
    ) -> Tuple[List[Dict[str, Any]], int]:
        query = self._filtered(user, filters)
        total = self.db.scalar(select(func.count()).select_from(query.subquery())) or 0

        column = _SORT_COLUMNS[paging.sort_by]
        ordering = column.asc() if paging.sort_order == "asc" else column.desc()
        executions = self.db.scalars(
            query.order_by(ordering, Execution.id).offset((paging.page - 1) * paging.limit).limit(paging.limit)
        ).all()
        return [execution_summary(execution) for execution in executions], total

    def get_execution_detail(self, execution_id: UUID, user: User) -> Dict[str, Any]:
        execution = self.db.get(Execution, execution_id)
        if not execution or (not user.is_admin and execution.user_id != user.user_id):
            raise NotFoundError("Execution not found or access denied")
        detail = execution_summary(execution, include_steps=True)
        detail["steps"] = [
            dict(step, attachments=[
                {"id": str(a.id), "original_name": a.original_name, "file_type": a.file_type, "file_size": a.file_size}
                for a in record.attachments
            ])
            for step, record in zip(detail["steps"], execution.records)
        ]
        return detail

    def batch_delete_executions(self, execution_ids: Sequence[UUID], user: User) -> int:
        """Delete several owned executions with their attachment files. All-or-nothing on ownership."""
        executions = [self.db.get(Execution, execution_id) for execution_id in set(execution_ids)]
        if any(e is None or e.user_id != user.user_id for e in executions):
            raise NotFoundError("One or more executions were not found or are not accessible")

        file_paths = []
        for execution in executions:
            for record in execution.records:
                file_paths.extend(attachment.file_path for attachment in record.attachments)
            if execution.review:
                file_paths.extend(attachment.file_path for attachment in execution.review.attachments)
            self.db.delete(execution)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error while batch deleting executions: {str(e)}")
            raise DatabaseError("A database error occurred while deleting executions.")

        for path in file_paths:
            self.storage.delete(path)
        logger.info(f"Batch deleted {len(executions)} execution(s) for {user.email}")
        return len(executions)

    def get_stats(self, user: User) -> Dict[str, Any]:
        owned = Execution.user_id == user.user_id
        status_rows = self.db.execute(
            select(Execution.status, func.count(Execution.id)).where(owned).group_by(Execution.status)
        ).all()
        distribution = {status: count for status, count in status_rows}
        total = sum(distribution.values())
        completed = distribution.get(ExecutionStatus.COMPLETED.value, 0)

        finished = self.db.execute(
            select(Execution.started_at, Execution.completed_at).where(
                owned,
                Execution.status == ExecutionStatus.COMPLETED.value,
                Execution.completed_at.is_not(None),
            )
        ).all()
        durations = [d for d in (compute_duration_ms(s, c) for s, c in finished) if d is not None]

        most_used = self.db.execute(
            select(Workflow.id, Workflow.name, func.count(Execution.id).label("uses"))
            .join(Execution, Execution.workflow_id == Workflow.id)
            .where(owned)
            .group_by(Workflow.id, Workflow.name)
            .order_by(func.count(Execution.id).desc())
            .limit(1)
        ).first()

        since = utcnow() - timedelta(days=30)
        recent = self.db.scalars(
            select(self._activity_time()).where(owned, self._activity_time() >= since)
        ).all()
        activity: Dict[str, int] = defaultdict(int)
        for moment in recent:
            activity[as_utc(moment).date().isoformat()] += 1

        return {
            "total_executions": total,
            "completed_executions": completed,
            "completion_rate": compute_completion_rate(completed, total),
            "average_execution_time": round_half_up(sum(durations) / len(durations)) if durations else 0,
            "total_workflows": self.db.scalar(
                select(func.count(Workflow.id)).where(Workflow.user_id == user.user_id)
            ) or 0,
            "most_used_workflow": (
                {"id": str(most_used.id), "name": most_used.name, "count": most_used.uses} if most_used else None
            ),
            "recent_activity": [{"date": day, "count": activity[day]} for day in sorted(activity)],
            "status_distribution": distribution,
        }

    def get_trends(self, user: User, months: int = 6) -> List[Dict[str, Any]]:
        """Per month: executions started, completed, completion rate and average duration (ms)."""
        since = utcnow() - timedelta(days=31 * months)
        rows = self.db.execute(
            select(self._activity_time(), Execution.status, Execution.started_at, Execution.completed_at).where(
                Execution.user_id == user.user_id, self._activity_time() >= since
            )
        ).all()

        buckets: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"count": 0, "completed": 0, "durations": []})
        for moment, status, started_at, completed_at in rows:
            bucket = buckets[month_key(moment)]
            bucket["count"] += 1
            if status == ExecutionStatus.COMPLETED.value:
                bucket["completed"] += 1
                duration = compute_duration_ms(started_at, completed_at)
                if duration is not None:
                    bucket["durations"].append(duration)

        return [
            {
                "period": month,
                "count": bucket["count"],
                "completed": bucket["completed"],
                "completion_rate": compute_completion_rate(bucket["completed"], bucket["count"]),
                "average_duration": (
                    round_half_up(sum(bucket["durations"]) / len(bucket["durations"])) if bucket["durations"] else None
                ),
            }
            for month, bucket in sorted(buckets.items())
        ]

    def get_aggregated(self, user: User, group_by: str, filters: Optional[HistoryFilters] = None) -> List[Dict[str, Any]]:
        if group_by not in GROUP_BY_OPTIONS:
            raise ValidationError(
                f"Unsupported group_by '{group_by}'", errors=[f"group_by must be one of {', '.join(GROUP_BY_OPTIONS)}"]
            )
        executions = self.db.scalars(self._filtered(user, filters)).all()

        buckets: Dict[Any, Dict[str, Any]] = {}
        for execution in executions:
            if group_by == "workflow":
                key = str(execution.workflow_id)
                label = execution.workflow.name
            elif group_by == "status":
                key = label = execution.status
            elif group_by == "month":
                key = label = month_key(execution.started_at or execution.created_at)
            else:
                key = label = week_key(execution.started_at or execution.created_at)

            bucket = buckets.setdefault(key, {"key": key, "label": label, "count": 0, "completed": 0})
            bucket["count"] += 1
            if execution.status == ExecutionStatus.COMPLETED.value:
                bucket["completed"] += 1

        result = []
        for key in sorted(buckets, key=lambda k: (k is None, str(k))):
            bucket = buckets[key]
            bucket["completion_rate"] = compute_completion_rate(bucket["completed"], bucket["count"])
            result.append(bucket)
        return result

    def export(
        self,
        user: User,
        export_format: str,
        filters: Optional[HistoryFilters] = None,
        include_steps: bool = False,
        include_reviews: bool = True,
    ):
        """Return the filtered executions as a CSV string or a JSON-ready list."""
        if export_format not in ("json", "csv"):
            raise ValidationError(f"Unsupported export format '{export_format}'", errors=["format must be json or csv"])
        executions = self.db.scalars(
            self._filtered(user, filters).order_by(Execution.created_at.desc(), Execution.id)
        ).all()
        summaries = [
            execution_summary(execution, include_steps=include_steps, include_review=include_reviews)
            for execution in executions
        ]
        logger.info(f"Exporting {len(summaries)} execution(s) as {export_format} for {user.email}")
        if export_format == "csv":
            return write_csv(summaries, include_steps=include_steps)
        return summaries
