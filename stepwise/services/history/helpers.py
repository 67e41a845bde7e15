import csv
import io
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from stepwise.models.db.executions import Execution
from stepwise.models.enums import StepStatus
from stepwise.services.executions.helpers import as_utc, compute_completion_rate, compute_duration_ms

GROUP_BY_OPTIONS = ("workflow", "status", "month", "week")

CSV_COLUMNS = [
    "execution_id",
    "title",
    "workflow_id",
    "workflow_name",
    "status",
    "priority",
    "progress",
    "started_at",
    "completed_at",
    "duration_ms",
    "completion_rate",
    "review_notes",
]

CSV_STEP_COLUMNS = ["step_order", "step_name", "step_status", "step_notes", "step_duration_minutes"]


def month_key(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).strftime("%Y-%m") if value else None


def week_key(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    year, week, _ = as_utc(value).isocalendar()
    return f"{year}-W{week:02d}"


def execution_summary(execution: Execution, include_steps: bool = False, include_review: bool = True) -> Dict[str, Any]:
    """Serialize an execution with its derived ``duration`` and ``completion_rate``."""
    records = list(execution.records)
    completed = sum(1 for record in records if record.status == StepStatus.COMPLETED.value)
    summary = {
        "id": str(execution.id),
        "title": execution.title,
        "description": execution.description,
        "workflow": {
            "id": str(execution.workflow_id),
            "name": execution.workflow.name if execution.workflow else None,
            "category": execution.workflow.category if execution.workflow else None,
        },
        "status": execution.status,
        "priority": execution.priority,
        "progress": execution.progress,
        "tags": list(execution.tags or []),
        "started_at": as_utc(execution.started_at),
        "completed_at": as_utc(execution.completed_at),
        "created_at": as_utc(execution.created_at),
        "duration": compute_duration_ms(execution.started_at, execution.completed_at),
        "completion_rate": compute_completion_rate(completed, len(records)),
        "total_steps": len(records),
        "completed_steps": completed,
        "has_review": execution.review is not None or bool(execution.review_notes),
    }
    if include_review:
        summary["review_notes"] = execution.review_notes
        summary["review"] = (
            {
                "id": str(execution.review.id),
                "title": execution.review.title,
                "rating": execution.review.rating,
            }
            if execution.review
            else None
        )
    if include_steps:
        summary["steps"] = [
            {
                "record_id": str(record.id),
                "step_id": str(record.step_id),
                "order": record.sequence,
                "name": record.step.name,
                "is_required": record.step.is_required,
                "status": record.status,
                "notes": record.notes,
                "started_at": as_utc(record.started_at),
                "completed_at": as_utc(record.completed_at),
                "actual_duration": record.actual_duration,
            }
            for record in records
        ]
    return summary


def _csv_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return "" if value is None else value


def write_csv(summaries: Iterable[Dict[str, Any]], include_steps: bool = False) -> str:
    """One row per execution, or one row per step record when ``include_steps`` is set."""
    buffer = io.StringIO()
    columns = CSV_COLUMNS + (CSV_STEP_COLUMNS if include_steps else [])
    writer = csv.DictWriter(buffer, fieldnames=columns, extrasaction="ignore")
    writer.writeheader()

    for summary in summaries:
        row = {
            "execution_id": summary["id"],
            "title": summary["title"],
            "workflow_id": summary["workflow"]["id"],
            "workflow_name": summary["workflow"]["name"],
            "status": summary["status"],
            "priority": summary["priority"],
            "progress": summary["progress"],
            "started_at": summary["started_at"],
            "completed_at": summary["completed_at"],
            "duration_ms": summary["duration"],
            "completion_rate": summary["completion_rate"],
            "review_notes": summary.get("review_notes"),
        }
        steps: List[Dict[str, Any]] = (summary.get("steps") or []) if include_steps else []
        if not steps:
            writer.writerow({key: _csv_value(value) for key, value in row.items()})
            continue
        for step in steps:
            step_row = dict(
                row,
                step_order=step["order"],
                step_name=step["name"],
                step_status=step["status"],
                step_notes=step["notes"],
                step_duration_minutes=step["actual_duration"],
            )
            writer.writerow({key: _csv_value(value) for key, value in step_row.items()})
    return buffer.getvalue()
