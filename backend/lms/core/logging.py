"""Logging for the LMS service.

Every record carries the id of the HTTP request that produced it. The
middleware in ``lms.main`` binds the id per request; work outside a request
(startup, seeding, tests calling services directly) logs ``-``.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Optional

BASE_LOGGER = "lms"
NO_REQUEST = "-"

_request_id: ContextVar[str] = ContextVar("lms_request_id", default=NO_REQUEST)


def bind_request_id(request_id: Optional[str] = None) -> str:
    """Set the request id for the current context; a fresh one is made when none is given."""
    value = request_id or uuid.uuid4().hex[:12]
    _request_id.set(value)
    return value


def current_request_id() -> str:
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    def filter(self, record):
        record.request_id = _request_id.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", NO_REQUEST),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_format: bool = False) -> logging.Logger:
    """Attach one stdout handler to the ``lms`` logger.

    Calling it again only updates the level, so app reloads do not stack handlers.
    """
    logger = logging.getLogger(BASE_LOGGER)
    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(log_level)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(RequestIdFilter())
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | req=%(request_id)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    logger.addHandler(handler)
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if name:
        return logging.getLogger(f"{BASE_LOGGER}.{name}")
    return logging.getLogger(BASE_LOGGER)
