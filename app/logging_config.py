"""JSON line logging for the WhatsApp bot.

Every record is one JSON object on stdout. Records emitted while a message
is in flight carry `user_id`, `message_id` and `stage` as top-level keys so
one delivery can be followed across components; anything else goes under
`context`.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

LOGGER_PREFIX = "wabot"
MESSAGE_FIELDS = ("user_id", "message_id", "stage")
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in MESSAGE_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # default=str covers UUIDs and datetimes passed in context
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route all logging through a single stdout JSON handler."""
    root = logging.getLogger()
    level_value = logging.getLevelName(level.upper())
    root.setLevel(level_value if isinstance(level_value, int) else logging.INFO)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


class MessageLogger(logging.LoggerAdapter):
    """
    Logger bound to one inbound message.

    The pipeline moves `stage` forward as it works, so a failure record
    names the step that broke without the caller passing it again.
    """

    def __init__(self, logger: logging.Logger, user_id: str, message_id: str):
        super().__init__(logger, {"user_id": user_id, "message_id": message_id})
        self.stage: Optional[str] = None

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = dict(self.extra)
        extra["stage"] = self.stage
        context = kwargs.pop("context", None)
        if context:
            extra["context"] = context
        kwargs["extra"] = extra
        return msg, kwargs
