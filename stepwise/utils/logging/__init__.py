__all__ = [
    "Logger",
    "get_logger",
]

from stepwise.utils.logging.default import Logger
from stepwise.utils.logging.otel_logger import get_logger
