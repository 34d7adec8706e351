"""
Structured JSON logging for the scoring service.

One JSON object per line: timestamp, level, correlation_id, module, message,
plus any deal or client identifiers passed in extra. The correlation ID lives
in a contextvar: the request middleware sets one per HTTP request, and each
worker sweep sets its own (e.g. "pipeline_scorer-3f9c0a1b2d4e") so every
deal scored in one run shares it.
"""
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Extra attributes copied from the LogRecord when passed via logger.x(..., extra={...})
EXTRA_FIELDS = (
    "recommendation_id",
    "client_id",
    "trigger_source",
    "run_type",
    "error_code",
)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    """Set the correlation ID in the current context."""
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """Generate a new correlation ID (UUID4 hex, 32 chars)."""
    return uuid.uuid4().hex


def start_sweep_correlation(worker_name: str) -> str:
    """Tag the current task with a fresh sweep ID, "<worker>-<12 hex chars>"."""
    cid = f"{worker_name}-{uuid.uuid4().hex[:12]}"
    set_correlation_id(cid)
    return cid


class StructuredJsonFormatter(logging.Formatter):
    """
    One log record, one line:
    {"timestamp": "...", "level": "INFO", "correlation_id": "pipeline_scorer-...",
     "module": "portalscore.services.batch_recalculate", "message": "...", "recommendation_id": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        return json.dumps(log_entry, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """
    Route every logger through one JSON stdout handler. Called from create_app.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    formatter = StructuredJsonFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # uvicorn and pytest may have installed handlers already
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
