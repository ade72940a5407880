"""
bff_core.observability.logging

Structured logging configuration for the service.

Responsibilities:
- Configure `structlog` for JSON logs suitable for SIEM ingestion (ELK/Splunk/Datadog).
- Provide a small wrapper for obtaining bound loggers.
- Provide the security audit sink (`SecurityAuditLog`) with recursive redaction.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Mapping
from typing import Any

import structlog

# Substring match on lower-cased keys; nested dicts/lists are scanned too.
SENSITIVE_FIELDS: tuple[str, ...] = (
    "password",
    "token",
    "secret",
    "api_key",
    "apikey",
    "authorization",
    "cookie",
    "csrf",
    "email",
    "phone",
    "ssn",
    "credit_card",
    "card_number",
    "cvv",
    "address",
    "postal_code",
    "zip_code",
    "tax_id",
)

REDACTED = "[REDACTED]"


def configure_logging(*, service_name: str, level: str) -> None:
    """
    Structured JSON logs for ingestion in Splunk/ELK/Datadog.
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    # structlog processors run on each log event; keep this list focused and stable.
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service_name(service_name),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _add_service_name(service_name: str):
    # Adds a stable "service" field for log routing/aggregation across environments.
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def sanitize(value: Any) -> Any:
    """Return a copy of `value` with sensitive keys replaced by "[REDACTED]"."""

    if isinstance(value, Mapping):
        cleaned: dict[str, Any] = {}
        for key, item in value.items():
            lowered = str(key).lower()
            if any(field in lowered for field in SENSITIVE_FIELDS):
                cleaned[key] = REDACTED
            else:
                cleaned[key] = sanitize(item)
        return cleaned
    if isinstance(value, (list, tuple)):
        return [sanitize(item) for item in value]
    return value


_SENSITIVE_WORDS = re.compile("|".join(re.escape(f) for f in SENSITIVE_FIELDS), re.IGNORECASE)


class SecurityAuditLog:
    """
    Audit sink for authentication/authorization decisions.

    The log event name is always "security_event"; the decision itself goes in
    `security_event` because structlog reserves the `event` key for the message.

    Two entry points mirror what the rest of the core needs:
    - `event(event, user_id, details)` for security-relevant decisions
    - `error(exc, context)` for unexpected failures
    Neither ever emits credential material; details are sanitized before logging.
    """

    def __init__(self, *, production: bool = False, logger: Any = None) -> None:
        self._production = production
        self._log = logger or get_logger("bff_core.security")

    def event(self, event: str, user_id: str | None, details: Mapping[str, Any]) -> None:
        self._log.info(
            "security_event",
            type="security",
            security_event=event,
            user_id=user_id or "anonymous",
            details=sanitize(details),
        )

    def error(self, exc: BaseException, context: Mapping[str, Any]) -> None:
        message = _SENSITIVE_WORDS.sub(REDACTED, str(exc))
        payload: dict[str, Any] = {
            "type": "error",
            "error_name": type(exc).__name__,
            "error_message": message,
            **sanitize(context),
        }
        if not self._production:
            # Tracebacks are useful locally but can leak paths/values in prod log pipelines.
            payload["exc_info"] = exc
        self._log.error("request_error", **payload)


# --- Module Notes -----------------------------------------------------------
# Request-scoped metadata is bound via contextvars in `observability.middleware`.
# The audit sink is built once in `api.app.create_app` and injected; nothing reaches for a global.
