"""Logging setup and per-request correlation helpers."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple
from uuid import uuid4

CORRELATION_HEADER = "x-correlation-id"

REDACTED_KEYS = frozenset({"authorization", "password", "email", "phone"})

# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


class RedactingFilter(logging.Filter):
    """Drop sensitive values that callers passed through ``extra``."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in REDACTED_KEYS:
            if key in record.__dict__:
                delattr(record, key)
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    """Install the JSON handler on the package logger."""

    package_logger = logging.getLogger("dreamers_api")
    package_logger.setLevel(level)
    if any(getattr(h, "_dreamers_handler", False) for h in package_logger.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RedactingFilter())
    handler._dreamers_handler = True  # type: ignore[attr-defined]
    package_logger.addHandler(handler)


def get_correlation_id(headers: Optional[Mapping[str, str]] = None) -> str:
    if headers is not None:
        value = headers.get(CORRELATION_HEADER)
        if value:
            return value
    return str(uuid4())


class RequestLogger(logging.LoggerAdapter):
    """Logger adapter that merges the bound request context into ``extra``."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def create_request_logger(
    correlation_id: str,
    bindings: Optional[Dict[str, Any]] = None,
    *,
    name: str = "dreamers_api.request",
) -> RequestLogger:
    return RequestLogger(
        logging.getLogger(name), {"correlation_id": correlation_id, **(bindings or {})}
    )
