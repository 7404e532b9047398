"""Root logger setup shared by the API process and the provider clients."""
import json
import logging
import os
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from typing import Optional

# set by the request middleware, read by every handler through CorrelationIdFilter
REQUEST_ID_CTX: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOG_FILE = "cryptodash.log"
TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(correlation_id)s - %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3

# structured fields passed through ``extra=`` by the providers and the aggregator
EVENT_FIELDS = ("event", "provider", "status", "wait_seconds", "field", "error", "cache_key")


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = REQUEST_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; event fields appear only when the record carries them."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }
        entry.update({name: getattr(record, name) for name in EVENT_FIELDS if hasattr(record, name)})
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _build_formatter(fmt: str) -> logging.Formatter:
    if fmt.lower() == "json":
        return JsonFormatter()
    return logging.Formatter(TEXT_FORMAT)


def _attach(root: logging.Logger, handler: logging.Handler, formatter: logging.Formatter) -> None:
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)


def setup_logging(level: str = "INFO", fmt: str = "text", log_dir: Optional[str] = None) -> None:
    """Route every record to stderr and, when ``log_dir`` is set, to a rotating ``cryptodash.log``.

    Calling it again replaces the handlers, so reloads do not duplicate output.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    root.handlers = []
    formatter = _build_formatter(fmt)
    _attach(root, logging.StreamHandler(), formatter)
    if not log_dir:
        return
    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, LOG_FILE), maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS,
        )
    except OSError as exc:
        root.warning("Cannot write logs under %s (%s); logging to console only", log_dir, exc)
        return
    _attach(root, file_handler, formatter)
