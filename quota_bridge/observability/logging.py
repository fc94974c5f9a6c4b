"""
structlog setup for quota-bridge.

Events are snake_case names with keyword fields, e.g.
logger.info("quota_credited", account_id=42, amount=1000). Donated keys and
credentials must never reach the output; `redact_secrets` masks the field
names that could carry them in case a call site slips.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from quota_bridge.config import settings

# Field names that may hold a raw key or a credential
REDACTED_FIELDS = frozenset(
    {
        "key",
        "keys",
        "raw_keys",
        "keys_text",
        "authorization",
        "push_auth_token",
        "directory_session_token",
        "password",
    }
)
REDACTED = "[redacted]"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask string or list values under REDACTED_FIELDS. Counts stay visible."""
    for field in REDACTED_FIELDS.intersection(event_dict):
        if isinstance(event_dict[field], (str, list, tuple, set)):
            event_dict[field] = REDACTED
    return event_dict


def _renderer() -> Processor:
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def setup_logging() -> None:
    """Route structlog through stdlib logging on stdout, JSON by default."""
    level = getattr(logging, settings.log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _renderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields (request_id, external_auth_id, ...) to every event in the block."""
    structlog.contextvars.bind_contextvars(**fields)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars(*fields)
