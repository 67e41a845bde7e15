"""
Process-wide logger setup.

Console logging is always configured. When ``OTEL_LOGS_ENABLED`` is set the
root logger is additionally bridged into the OpenTelemetry SDK log pipeline so
records can be shipped by whatever exporter the deployment wires in.
"""

import logging
import sys

from stepwise.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def _attach_otel_handler(root: logging.Logger) -> None:
    from opentelemetry._logs import set_logger_provider
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, ConsoleLogExporter
    from opentelemetry.sdk.resources import Resource

    provider = LoggerProvider(resource=Resource.create({"service.name": settings.app_name}))
    provider.add_log_record_processor(BatchLogRecordProcessor(ConsoleLogExporter()))
    set_logger_provider(provider)
    root.addHandler(LoggingHandler(level=logging.NOTSET, logger_provider=provider))


def configure_logging() -> None:
    global _configured
    if _configured:
        return

    root = logging.getLogger(settings.app_name)
    root.setLevel(settings.LOG_LEVEL.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    if settings.OTEL_LOGS_ENABLED:
        _attach_otel_handler(root)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger nested under the application logger."""
    configure_logging()
    if name == settings.app_name or name.startswith(f"{settings.app_name}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{settings.app_name}.{name}")


logger = get_logger(settings.app_name)
