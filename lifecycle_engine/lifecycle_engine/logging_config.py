"""Logging setup for the engine, the daemon, and the CLI.

Two modes are supported:

* plain text (default) -- ``asctime level logger message`` lines;
* structured -- each record rendered as a single-line JSON object, enabled by
  ``LIFECYCLE_STRUCTURED_LOGGING=true``.

Output schema per line in structured mode::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "lifecycle_engine.automation.runner",
        "message": "Automation run finished",
        "deployment_id": "lab-01",     // present when passed via ``extra``
        "automation_id": "auto-...",   // present when passed via ``extra``
        "exc_info": "Traceback ..."    // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import UTC, datetime
from typing import Any

from lifecycle_engine.config import Settings

_TEXT_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
_CONTEXT_FIELDS = ("deployment_id", "automation_id", "snapshot_id", "execution_id")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(settings: Settings) -> None:
    """Install a single root handler according to *settings*.

    Safe to call repeatedly; existing root handlers are replaced.
    """
    handler = logging.StreamHandler(sys.stderr)
    if settings.structured_logging:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.debug else logging.INFO)
