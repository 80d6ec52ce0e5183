"""
Logging setup for the reservation engine.

Every handler carries two filters: one stamps the current request id on
the record, the other masks credentials and guest e-mail addresses.
Reservation lifecycle events go to the ``hotel_reservation_engine.business``
logger through ``log_business_event``.
"""

import json
import logging
import logging.config
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import get_settings

APP_LOGGER = "hotel_reservation_engine"

_FILTERS = ["request_id", "sensitive_data"]
_ROTATE_BYTES = 10 * 1024 * 1024

# Third-party loggers and the level they are held at
_LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
    "celery": "INFO",
    "sqlalchemy.engine": "WARNING",
    "httpx": "WARNING",
}


def _rotating_file(path: str, level: str, formatter: str, backups: int) -> Dict[str, Any]:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": formatter,
        "filename": path,
        "maxBytes": _ROTATE_BYTES,
        "backupCount": backups,
        "filters": _FILTERS,
    }


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_json_logging: bool = False
) -> None:
    """
    Configure the application, library and root loggers.

    Args:
        log_level: Level for the application logger and the root logger
        log_file: Rotating log file written alongside stdout
        enable_json_logging: Emit one JSON object per line instead of text
    """
    formatter = "json" if enable_json_logging else "text"

    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": formatter,
            "stream": sys.stdout,
            "filters": _FILTERS,
        }
    }
    if log_file:
        handlers["file"] = _rotating_file(log_file, log_level, formatter, backups=5)

    shared: List[str] = list(handlers)
    app_handlers = list(shared)

    # Production keeps errors in their own file as well
    if get_settings().environment == "production":
        error_file = log_file.replace(".log", "_errors.log") if log_file else "logs/errors.log"
        handlers["error_file"] = _rotating_file(error_file, "ERROR", formatter, backups=10)
        app_handlers.append("error_file")

    loggers = {
        name: {"level": level, "handlers": list(shared), "propagate": False}
        for name, level in _LIBRARY_LEVELS.items()
    }
    loggers[APP_LOGGER] = {"level": log_level, "handlers": app_handlers, "propagate": False}

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "text": {
                "format": "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d [%(request_id)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {"()": f"{__name__}.JSONFormatter"},
        },
        "filters": {
            "request_id": {"()": f"{__name__}.RequestIDFilter"},
            "sensitive_data": {"()": f"{__name__}.SensitiveDataFilter"},
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": log_level, "handlers": list(shared)},
    })


class RequestIDFilter(logging.Filter):
    """Stamp records with the id of the request being served."""

    def filter(self, record):
        if not getattr(record, "request_id", None):
            from ..middleware.logging import request_id_var
            record.request_id = request_id_var.get()
        return True


class SensitiveDataFilter(logging.Filter):
    """Mask credentials and guest contact details."""

    SENSITIVE_KEYS = (
        "password", "token", "secret", "authorization", "signature",
        "api_key", "card", "guest_email",
    )
    EMAIL = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
    LONG_TOKEN = re.compile(r"\b[A-Za-z0-9]{32,}\b")

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = self._mask_text(record.msg)

        for key, value in list(record.__dict__.items()):
            if isinstance(value, dict):
                setattr(record, key, self._mask(value))
        return True

    def _mask_text(self, text: str) -> str:
        return self.EMAIL.sub("***EMAIL***", self.LONG_TOKEN.sub("***MASKED***", text))

    def _is_sensitive(self, key) -> bool:
        lowered = str(key).lower()
        return any(word in lowered for word in self.SENSITIVE_KEYS)

    def _mask(self, value):
        if isinstance(value, dict):
            return {
                k: "***MASKED***" if self._is_sensitive(k) else self._mask(v)
                for k, v in value.items()
            }
        if isinstance(value, str):
            return self._mask_text(value)
        if isinstance(value, (list, tuple)):
            return type(value)(self._mask(item) for item in value)
        return value


class JSONFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields go under ``extra``."""

    _STANDARD_ATTRS = frozenset(
        logging.LogRecord("", 0, "", 0, "", (), None).__dict__
    ) | {"message", "request_id"}

    def format(self, record):
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", None),
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in record.__dict__.items() if k not in self._STANDARD_ATTRS}
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str, ensure_ascii=False)


def log_business_event(event_type: str, details: Dict[str, Any], user_id: Optional[str] = None):
    """Record a reservation lifecycle event."""
    logging.getLogger(f"{APP_LOGGER}.business").info(
        f"Business event: {event_type}",
        extra={
            "event_type": event_type,
            "business_event": True,
            "user_id": user_id,
            "event_details": details,
        }
    )
