import logging
from typing import Optional

from stepwise.utils.logging.otel_logger import get_logger


class Logger:
    """
    Context-carrying logger.

    Wraps the application logger so that every record emitted through an
    instance carries the same request context (request id, user id, ...)
    in its ``extra`` mapping.

    Args:
        name (str): The name of the logger instance
        request_context (dict, optional): Context merged into every record
    """

    def __init__(self, name: str, request_context: Optional[dict] = None):
        self.base_logger: logging.Logger = get_logger(name)
        self.request_context = request_context or {}

    def _merge(self, extra: Optional[dict]) -> Optional[dict]:
        if not extra:
            return self.request_context or None
        if not self.request_context:
            return extra
        merged = dict(extra)
        merged.update(self.request_context)
        return merged

    def debug(self, message, extra=None):
        self.base_logger.debug(message, extra=self._merge(extra))

    def info(self, message, extra=None):
        self.base_logger.info(message, extra=self._merge(extra))

    def warning(self, message, extra=None):
        self.base_logger.warning(message, extra=self._merge(extra))

    def error(self, message, extra=None, exc_info=False):
        self.base_logger.error(message, extra=self._merge(extra), exc_info=exc_info)

    def critical(self, message, extra=None):
        self.base_logger.critical(message, extra=self._merge(extra))
