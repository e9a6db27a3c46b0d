"""Structured logging configuration for MarkMind."""

import json
import logging
import time
import uuid
from typing import Callable
from contextvars import ContextVar
from functools import wraps

# Context variable for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

# Record attributes copied into JSON lines when a caller passes them via extra=
EXTRA_FIELDS = ('duration_ms', 'operation', 'fragment_id', 'match_type')


class StructuredFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(''),
        }
        payload.update(
            (name, getattr(record, name)) for name in EXTRA_FIELDS if hasattr(record, name)
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", structured: bool = False) -> None:
    """Install a root handler, plain text or JSON lines."""
    handler = logging.StreamHandler()
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def with_request_id(func: Callable) -> Callable:
    """Decorator to tag an engine operation with a request ID and timing."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        # Nested operations keep the outer request ID
        if request_id_var.get(''):
            return await func(*args, **kwargs)

        request_id = str(uuid.uuid4())[:8]
        token = request_id_var.set(request_id)
        start = time.perf_counter()

        try:
            return await func(*args, **kwargs)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            logger = logging.getLogger(func.__module__)
            logger.debug(
                "Operation completed",
                extra={'duration_ms': round(duration_ms, 2), 'operation': func.__name__}
            )
            request_id_var.reset(token)

    return wrapper
