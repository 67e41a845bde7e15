from typing import Optional, Protocol

from stepwise.models.db.executions import Execution, ExecutionRecord
from stepwise.utils.logging import Logger


class TransitionObserver(Protocol):
    """Receives every execution and step status change after it is committed."""

    def execution_transitioned(
        self, execution: Execution, previous: str, current: str, reason: Optional[str] = None
    ) -> None: ...

    def step_transitioned(self, record: ExecutionRecord, previous: str, current: str) -> None: ...


class LoggingTransitionObserver:
    def __init__(self, logger: Optional[Logger] = None):
        self.logger = logger or Logger("executions.transitions")

    def execution_transitioned(self, execution, previous, current, reason=None):
        self.logger.info(
            f"Execution {execution.id} moved {previous} -> {current}",
            {
                "execution_id": str(execution.id),
                "previous_status": previous,
                "current_status": current,
                "reason": reason,
            },
        )

    def step_transitioned(self, record, previous, current):
        self.logger.info(
            f"Execution record {record.id} moved {previous} -> {current}",
            {
                "execution_id": str(record.execution_id),
                "record_id": str(record.id),
                "previous_status": previous,
                "current_status": current,
            },
        )


def get_transition_observer() -> TransitionObserver:
    return LoggingTransitionObserver()
