import json
import logging
from datetime import UTC, datetime

from app.infrastructure.logging.context import get_request_id, get_user_id


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record.

    Messages follow the ``event key=value ...`` convention; the leading word is
    copied into ``event`` so log queries can filter on it.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": message.split(" ", 1)[0] if message else None,
            "message": message,
            "request_id": get_request_id(),
            "user_id": get_user_id(),
        }
        if record.exc_info:
            payload["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
