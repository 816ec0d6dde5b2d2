from __future__ import annotations

import logging
import traceback
from logging import Handler, LogRecord
from typing import Any, Dict, Optional

from .client import AppLogger

# Records from the HTTP stack would loop back into the forwarder.
_IGNORED_LOGGERS = ("httpx", "httpcore")

_LEVELS = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warning",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}


def _level_name(levelno: int) -> str:
    if levelno < logging.DEBUG:
        return "trace"
    for threshold in (logging.CRITICAL, logging.ERROR, logging.WARNING, logging.INFO):
        if levelno >= threshold:
            return _LEVELS[threshold]
    return "debug"


class ForwarderLogHandler(Handler):
    """
    Logging handler that turns stdlib records into structured app logs.
    """

    def __init__(self, app: AppLogger, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._app = app

    def emit(self, record: LogRecord) -> None:
        if record.name.split(".", 1)[0] in _IGNORED_LOGGERS:
            return
        try:
            fields: Dict[str, Any] = {
                "logger": record.name,
                "line_no": record.lineno,
            }

            if record.exc_info:
                _type, _value, _tb = record.exc_info
                if _type is not None:
                    fields["exception_type"] = _type.__name__
                if _tb is not None:
                    fields["stacktrace"] = "".join(traceback.format_exception(_type, _value, _tb))

            self._app.log(
                record.getMessage(),
                level=_level_name(record.levelno),  # type: ignore[arg-type]
                fields=fields,
                caller=record.pathname or None,
                function=record.funcName or None,
            )
        except Exception:
            # Never break application logging.
            self.handleError(record)


def install_logging_bridge(
    app: AppLogger,
    logger: Optional[logging.Logger] = None,
    level: int = logging.NOTSET,
) -> ForwarderLogHandler:
    """
    Attach a forwarding handler to ``logger`` (root by default).

    Existing handlers are kept. Installing twice on the same logger returns
    the handler that is already there.
    """
    target = logger or logging.getLogger()
    for existing in target.handlers:
        if isinstance(existing, ForwarderLogHandler):
            return existing

    handler = ForwarderLogHandler(app, level=level)
    target.addHandler(handler)
    return handler


def remove_logging_bridge(logger: Optional[logging.Logger] = None) -> None:
    target = logger or logging.getLogger()
    for existing in list(target.handlers):
        if isinstance(existing, ForwarderLogHandler):
            target.removeHandler(existing)
