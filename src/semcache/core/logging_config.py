"""
Logging configuration for semcache.

Every log line carries the request trace ID from the current context,
including lines emitted by background refresh tasks.
"""

import logging

from semcache.core.context import get_request_id


class RequestIdFilter(logging.Filter):
    """Logging filter that injects the request trace ID into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()  # type: ignore[attr-defined]
        return True


def configure_logging(level: int = logging.INFO) -> None:
    """Install a single console handler with trace ID injection on the root logger.

    Safe to call repeatedly; previously installed handlers are replaced.
    """
    log_format = "[%(asctime)s] [%(levelname)s] [%(request_id)s] %(name)s: %(message)s"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(log_format))
    console_handler.addFilter(RequestIdFilter())

    root_logger.addHandler(console_handler)
