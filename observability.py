"""Log setup for the Edu Platform API.

Invariants:
    - Exactly one platform handler sits on the root logger, even when the
      lifespan runs more than once in a process (test clients, reloads)
    - Context travels through ``extra=``: handlers pass the acting ``email``,
      the ``class_id`` or ``collection`` touched, and ``path``/``method`` for
      unhandled errors
    - Request bodies, tokens and payment secrets are never passed as extras
    - pymongo and stripe chatter is held at WARNING so per-request lines stay readable

LOG_FORMAT=json (default) writes one JSON object per line; anything else
falls back to a plain text line for local runs.
"""

import json
import logging
from datetime import datetime, timezone

CONTEXT_FIELDS = ("email", "class_id", "collection", "path", "method", "error_code")
QUIET_LOGGERS = ("pymongo", "stripe")
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (field, getattr(record, field))
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class PlatformHandler(logging.StreamHandler):
    """Marker type so setup_logging can find the handler it installed earlier."""


def setup_logging(level: str = "INFO", fmt: str = "json") -> logging.Handler:
    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, PlatformHandler)]:
        root.removeHandler(existing)

    handler = PlatformHandler()
    handler.setFormatter(JSONFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
