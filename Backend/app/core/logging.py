# Backend/app/core/logging.py
"""
Single structlog JSON stack shared by the API and the bulk fetch worker.

Every event carries `ts`, `level`, `service` and, when bound, the request
or run id. Credentials are redacted and long upstream error strings are
clipped before rendering.
"""
from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

import structlog

from app.core.config import get_settings
from app.core.request_id import correlation_ids

EventDict = Dict[str, Any]
Processor = Callable[[Any, str, EventDict], EventDict]

REDACTED = "***redacted***"
MAX_FIELD_CHARS = 500

# Per-source fetch headers can carry API keys.
_SECRET_KEYS = frozenset(
    {
        "authorization", "api_key", "apikey", "token", "access_token",
        "password", "secret", "cookie", "headers", "dsn", "database_url",
    }
)
_CLIPPED_KEYS = ("error", "url", "query_snippet")


# -------- Processors ---------------------------------------------------------

def _add_ts(_: Any, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("ts", datetime.now(timezone.utc).isoformat(timespec="milliseconds"))
    return event_dict

def _add_level(_: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["level"] = str(event_dict.get("level") or method_name or "info").lower()
    return event_dict

def _add_service(service_name: str) -> Processor:
    def _inner(_: Any, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict
    return _inner

def _add_correlation_ids(_: Any, __: str, event_dict: EventDict) -> EventDict:
    for key, value in correlation_ids().items():
        event_dict.setdefault(key, value)
    return event_dict

def _redact_secrets(_: Any, __: str, event_dict: EventDict) -> EventDict:
    for key in list(event_dict):
        if str(key).lower() in _SECRET_KEYS:
            event_dict[key] = REDACTED
    return event_dict

def _clip_long_fields(_: Any, __: str, event_dict: EventDict) -> EventDict:
    for key in _CLIPPED_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
            event_dict[key] = value[:MAX_FIELD_CHARS] + "..."
    return event_dict


# -------- Public API ---------------------------------------------------------

def resolve_level(level: Union[int, str, None] = None) -> int:
    if isinstance(level, int):
        return level
    name = str(level or get_settings().LOG_LEVEL).strip().upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO

_logger: Optional[structlog.BoundLogger] = None

def configure_logging(service_name: str = "api", *, level: Union[int, str, None] = None) -> None:
    """`service_name` is "api" for the HTTP app and "worker" for the bulk fetch job."""
    global _logger

    numeric_level = resolve_level(level)
    logging.basicConfig(
        level=numeric_level,
        format="%(message)s",
        stream=sys.stderr,
        force=True,
    )

    structlog.configure(
        processors=[
            _add_ts,
            _add_level,
            _add_service(service_name),
            _add_correlation_ids,
            _redact_secrets,
            _clip_long_fields,
            structlog.processors.EventRenamer("event"),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _logger = structlog.get_logger()

def get_logger() -> structlog.BoundLogger:
    if _logger is None:
        configure_logging("api")
    return _logger

logger = get_logger()
