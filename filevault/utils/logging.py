"""
Logging setup shared by the API process and the Celery workers.

Every record carries the correlation id of the request (or task) that
produced it, taken from a context variable set by the request middleware.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - [%(levelname)s] - [%(correlation_id)s] - %(message)s"

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(value: Optional[str]):
    """Bind ``value`` to the current context; returns the token for ``reset_correlation_id``."""
    return correlation_id_var.set(value)


def reset_correlation_id(token) -> None:
    correlation_id_var.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Attach the current correlation id (or ``-``) to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger once at startup.

    Calling it again only adjusts the level.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(h, "_filevault", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    handler._filevault = True
    root.addHandler(handler)

    # Silence noisy libraries
    for noisy in ("botocore", "boto3", "urllib3", "kombu", "amqp"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
