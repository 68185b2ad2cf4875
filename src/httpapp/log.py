"""
Logging setup.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides where records go and what they look like. Two formats:

    text   2026-01-15 12:30:45 [INFO] httpapp.app: [GET] url=/users/42
    json   {"timestamp": "...", "level": "INFO", "logger": "httpapp.app",
            "message": "[GET] url=/users/42"}

JSON lines are meant for log aggregators, text for people.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(level: str = "INFO", log_format: str = "text", stream: Optional[object] = None) -> None:
    """
    Configure the root logger.

    Replaces existing root handlers, so calling it twice does not
    duplicate output.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: ``"text"`` or ``"json"``.
        stream: Destination stream; stderr when None.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(stream)
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))

    logging.basicConfig(level=numeric_level, handlers=[handler], force=True)
    logging.getLogger("httpapp").setLevel(numeric_level)
