"""Structured logging for bacpac_imagegen.

Each component holds its own ComponentLogger carrying a component prefix,
so nothing in the pipeline mutates process-wide logging state. Only the
CLI calls configure_logging() to attach a handler.

Line format::

    [2024-05-01T12:00:00.000Z] [INFO] [executor] Build finished | Properties: {"seconds": 12.5}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any

ROOT_LOGGER_NAME = "bacpac_imagegen"

_HANDLER_ATTR = "_bacpac_imagegen_handler"


class ComponentLogger(logging.LoggerAdapter):
    """Logger adapter that tags records with a component prefix.

    Structured fields are passed with the ``properties`` keyword::

        logger.info("Copied artifact", properties={"size": 1024})
    """

    def __init__(self, logger: logging.Logger, component: str) -> None:
        super().__init__(logger, {"component": component})
        self.component = component

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        properties = kwargs.pop("properties", None)
        extra = dict(kwargs.get("extra") or {})
        extra["component"] = self.component
        if properties:
            extra["properties"] = properties
        kwargs["extra"] = extra
        return msg, kwargs

    def child(self, component: str) -> ComponentLogger:
        """Return a logger for a sub-component nested under this one.

        The child's records propagate through this adapter's logger, so
        handlers attached to an injected logger also see them.
        """
        return ComponentLogger(self.logger.getChild(component), component)


def get_logger(component: str) -> ComponentLogger:
    """Create a component logger.

    Args:
        component: Prefix shown in every log line (e.g. 'validator').

    Returns:
        ComponentLogger bound to ``bacpac_imagegen.<component>``.
    """
    return ComponentLogger(
        logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}"), component
    )


def _format_timestamp(created: float) -> str:
    stamp = datetime.fromtimestamp(created, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class StructuredFormatter(logging.Formatter):
    """Render records as ``[ts] [LEVEL] [component] message`` or JSON lines."""

    def __init__(self, json_format: bool = False) -> None:
        super().__init__()
        self.json_format = json_format

    def format(self, record: logging.LogRecord) -> str:
        component = getattr(record, "component", record.name.rsplit(".", 1)[-1])
        properties = getattr(record, "properties", None)
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        timestamp = _format_timestamp(record.created)

        if self.json_format:
            payload: dict[str, Any] = {
                "timestamp": timestamp,
                "level": record.levelname,
                "component": component,
                "message": message,
            }
            if properties:
                payload["properties"] = properties
            return json.dumps(payload, sort_keys=True, default=str)

        line = f"[{timestamp}] [{record.levelname}] [{component}] {message}"
        if properties:
            line += " | Properties: " + json.dumps(
                properties, sort_keys=True, default=str
            )
        return line


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Attach a structured handler to the package logger.

    Calling this again replaces the previously installed handler.

    Args:
        level: Log level name.
        json_format: Emit JSON lines instead of text lines.
        stream: Output stream (default: stderr).

    Returns:
        The configured package logger.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    previous = getattr(root, _HANDLER_ATTR, None)
    if previous is not None:
        root.removeHandler(previous)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter(json_format=json_format))
    root.addHandler(handler)
    root.setLevel(level.upper())
    setattr(root, _HANDLER_ATTR, handler)
    return root


__all__ = [
    "ROOT_LOGGER_NAME",
    "ComponentLogger",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
]
