"""
Pure building blocks of the execution lifecycle: the transition tables,
derived-field computations and the dependency gate. Nothing here touches the
database session.
"""

from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Sequence, Tuple

from stepwise.models.enums import ExecutionStatus, StepStatus
from stepwise.utils.exception import InvalidStateTransitionError

# action -> (statuses it may start from, resulting status)
EXECUTION_TRANSITIONS: Dict[str, Tuple[FrozenSet[ExecutionStatus], ExecutionStatus]] = {
    "begin": (frozenset({ExecutionStatus.PENDING}), ExecutionStatus.IN_PROGRESS),
    "pause": (frozenset({ExecutionStatus.IN_PROGRESS}), ExecutionStatus.PAUSED),
    "resume": (frozenset({ExecutionStatus.PAUSED}), ExecutionStatus.IN_PROGRESS),
    "cancel": (
        frozenset({ExecutionStatus.IN_PROGRESS, ExecutionStatus.PAUSED}),
        ExecutionStatus.CANCELLED,
    ),
    "complete": (frozenset({ExecutionStatus.IN_PROGRESS}), ExecutionStatus.COMPLETED),
    "fail": (frozenset({ExecutionStatus.IN_PROGRESS}), ExecutionStatus.FAILED),
}

STEP_TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.PENDING: frozenset(
        {StepStatus.IN_PROGRESS, StepStatus.COMPLETED, StepStatus.SKIPPED, StepStatus.FAILED}
    ),
    StepStatus.IN_PROGRESS: frozenset(
        {StepStatus.PENDING, StepStatus.COMPLETED, StepStatus.SKIPPED, StepStatus.FAILED}
    ),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
    StepStatus.FAILED: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite hands them back without tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_execution_transition(current: str, action: str) -> ExecutionStatus:
    """Return the status ``action`` leads to from ``current`` or raise."""
    allowed_from, target = EXECUTION_TRANSITIONS[action]
    if ExecutionStatus(current) not in allowed_from:
        raise InvalidStateTransitionError(
            f"Cannot {action} an execution that is {current}",
            current=current,
            attempted=target.value,
        )
    return target


def ensure_step_transition(current: str, target: StepStatus) -> None:
    if target not in STEP_TRANSITIONS[StepStatus(current)]:
        raise InvalidStateTransitionError(
            f"Cannot move a step from {current} to {target.value}",
            current=current,
            attempted=target.value,
        )


def round_half_up(value: float) -> int:
    """Round a non-negative number with halves going up (``round`` sends 12.5 to 12)."""
    return int(value + 0.5)


def compute_duration_ms(started_at: Optional[datetime], completed_at: Optional[datetime]) -> Optional[int]:
    if started_at is None or completed_at is None:
        return None
    return int((as_utc(completed_at) - as_utc(started_at)).total_seconds() * 1000)


def compute_duration_minutes(started_at: Optional[datetime], completed_at: Optional[datetime]) -> Optional[int]:
    if started_at is None or completed_at is None:
        return None
    return round_half_up((as_utc(completed_at) - as_utc(started_at)).total_seconds() / 60)


def compute_completion_rate(completed: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(completed / total * 100, 2)


def compute_progress(records: Iterable[Tuple[bool, str]]) -> int:
    """Progress from ``(is_required, status)`` pairs.

    The ratio is completed required steps over required steps. A workflow
    without required steps falls back to all steps.
    """
    records = list(records)
    required = [status for is_required, status in records if is_required]
    pool = required if required else [status for _, status in records]
    if not pool:
        return 0
    completed = sum(1 for status in pool if status == StepStatus.COMPLETED.value)
    return round_half_up(completed / len(pool) * 100)


def count_outstanding_required(records: Iterable[Tuple[bool, str]]) -> int:
    return sum(
        1 for is_required, status in records if is_required and status != StepStatus.COMPLETED.value
    )


def dependencies_satisfied(dependencies: Optional[Sequence[str]], status_by_step: Mapping[str, str]) -> bool:
    """True when every dependency step id maps to a COMPLETED record status."""
    if not dependencies:
        return True
    return all(status_by_step.get(str(dep)) == StepStatus.COMPLETED.value for dep in dependencies)
