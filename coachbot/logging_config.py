"""JSON logging shared by the API and worker processes.

One JSON object per line. Job log lines carry the correlation fields
(job_id, queue, chat_id, user_id, attempt) in ``context`` via
``JobLoggerAdapter``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "apscheduler")


class JSONFormatter(logging.Formatter):
    def __init__(self, process_role: str = "api"):
        super().__init__()
        self.process_role = process_role

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "process_role": self.process_role,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["error_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", process_role: str = "api") -> None:
    """Replace root handlers with one stdout JSON handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(process_role))
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"coachbot.{name}")


class JobLoggerAdapter(logging.LoggerAdapter):
    """Attach job correlation fields to every record.

    Call-site ``context=`` and ``extra={"context": ...}`` are merged over the
    job fields, call-site keys winning.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        extra = kwargs.get("extra") or {}
        combined_context = {**self.extra, **(extra.get("context") or {}), **(context or {})}
        if combined_context:
            kwargs["extra"] = {**extra, "context": combined_context}
        return msg, kwargs
