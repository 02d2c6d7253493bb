from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Optional, Union

# Request context carried into every log line and error envelope.
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | cid=%(correlation_id)s | user=%(user_id)s | %(message)s"

# Third-party loggers that are too chatty at INFO.
_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "multipart")


class RequestContextFilter(logging.Filter):
    """Stamp each record with the current correlation id and acting user ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        record.user_id = user_id_var.get() or "-"
        return True


# PUBLIC_INTERFACE
def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """
    Install the service log handler on the root logger.

    Calling it again replaces the handler instead of stacking a second one,
    so importing the app from tests or reloaders does not duplicate lines.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT))
    handler.addFilter(RequestContextFilter())
    handler.set_name("quality_hold")

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == "quality_hold":
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
