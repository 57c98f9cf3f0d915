"""Centralized JSON formatter and logging setup for structured logging."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Union

from .. import __version__

_STANDARD_RECORD_ATTRS = frozenset({
    "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno",
    "funcName", "created", "msecs", "relativeCreated", "thread",
    "threadName", "processName", "process", "name", "message",
    "taskName",
})

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Payload keys:

        ts           UTC time of the record, ISO 8601 with milliseconds
        level        level name
        logger       logger name, e.g. ``pm3.data.runner``
        msg          formatted message
        pm3_version  version of the package that wrote the record
        exc          formatted traceback, only when exc_info is set

    Any ``extra=`` fields (``tmc``, ``year``, ``rows``, ``path`` ...) are
    merged in at the top level.  Values JSON cannot encode, such as paths
    and enum members, are written as their ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "pm3_version": __version__,
        }

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        for key, value in getattr(record, "__dict__", {}).items():
            if key not in _STANDARD_RECORD_ATTRS:
                payload[key] = value

        return json.dumps(payload, default=str)


def configure_logging(level: Union[int, str] = logging.INFO, json_format: bool = False) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: Logging level name or number.
        json_format: Use ``JsonFormatter`` instead of plain text lines.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else logging.Formatter(_TEXT_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
