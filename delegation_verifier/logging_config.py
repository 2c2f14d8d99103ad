import json, logging, os, sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Context attributes copied from LogRecord extras into the JSON payload
CONTEXT_FIELDS = ("request_id", "delegate_aid", "level_name")


class JsonFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for k in CONTEXT_FIELDS:
            if hasattr(record, k):
                payload[k] = getattr(record, k)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def verification_context(request_id: str, delegate_aid: str,
                         level_name: Optional[str] = None) -> Dict[str, Any]:
    """`extra` dict tying a log line to one verification run (and level)."""
    extra = {"request_id": request_id, "delegate_aid": delegate_aid}
    if level_name:
        extra["level_name"] = level_name
    return extra


def configure_logging(log_file: str = None, log_level: str = None):
    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JsonFormatter())
    handlers = [console_handler]

    # Optional file handler (always append)
    log_file = log_file or os.getenv("DV_LOG_FILE")
    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setFormatter(JsonFormatter())
        handlers.append(file_handler)

    root = logging.getLogger()
    # DV_LOG_LEVEL=DEBUG shows per-witness and per-hop decisions
    log_level = (log_level or os.getenv("DV_LOG_LEVEL", "INFO")).upper()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.handlers = handlers

    # httpx logs every request at INFO; receipt gathering makes many
    logging.getLogger("httpx").setLevel(logging.WARNING)
