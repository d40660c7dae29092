# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the contact relay.

Modules obtain loggers through :func:`get_logger` and attach request metadata
with the standard ``extra=`` keyword. Handlers are installed once by
:func:`configure_logging` in the entry point, either as one JSON object per
line (the default, suited to container log collectors) or as plain text.

Example:
    Typical usage in a module::

        from contact_relay.logger import get_logger

        logger = get_logger("api")
        logger.warning("Rate limited", extra={"client": "203.0.113.7"})

    Produces, with the JSON format::

        {"timestamp": "2025-01-01T12:00:00.000000+00:00", "level": "warning",
         "message": "Rate limited", "client": "203.0.113.7"}
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

ROOT_LOGGER_NAME = "contact_relay"

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger under the ``contact_relay`` namespace.

    Args:
        name: Child logger name, e.g. ``"api"``. ``None`` returns the
            package root logger.

    Returns:
        A standard ``logging.Logger``. No handlers are attached here.
    """
    if not name:
        return logging.getLogger(ROOT_LOGGER_NAME)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON line with its ``extra`` metadata."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Install the root handler for the process.

    Args:
        level: Level name (``DEBUG``, ``INFO``, ...). Unknown names fall back
            to ``INFO``.
        fmt: ``"json"`` for JSON lines, anything else for plain text.
    """
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] [%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )
