from unittest.mock import MagicMock, patch

from stepwise.services.executions.observers import LoggingTransitionObserver
from stepwise.utils.logging import Logger, get_logger


def test_loggers_nest_under_the_application_logger():
    assert get_logger("exceptions").name == "stepwise.exceptions"
    assert get_logger("stepwise.http").name == "stepwise.http"


def test_request_context_is_merged_into_extra():
    with patch("stepwise.utils.logging.default.get_logger") as mock_get_logger:
        logger = Logger("http", request_context={"request_id": "r-1"})
        logger.info("Incoming Request", {"method": "GET"})

    mock_get_logger.return_value.info.assert_called_once_with(
        "Incoming Request", extra={"method": "GET", "request_id": "r-1"}
    )


def test_transition_observer_logs_structured_fields():
    logger = MagicMock()
    execution = MagicMock(id="exec-1")

    LoggingTransitionObserver(logger).execution_transitioned(execution, "IN_PROGRESS", "PAUSED")

    message, extra = logger.info.call_args.args
    assert message == "Execution exec-1 moved IN_PROGRESS -> PAUSED"
    assert extra["previous_status"] == "IN_PROGRESS"
    assert extra["reason"] is None
