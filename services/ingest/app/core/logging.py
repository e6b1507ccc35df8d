import logging
from typing import Any, Dict

import structlog
import re


def _configure_stdlib_logging() -> None:
    logging.basicConfig(
        format="%(message)s",
        level=logging.INFO,
    )


SECRET_KEYS = {
    "authorization",
    "x-signature",
    "signature",
    "webhook_secret",
    "jwt_secret_key",
    "secret",
}


def _redact_event_logger(_logger, _name, event_dict: Dict[str, Any]):  # type: ignore[override]
    for k in list(event_dict.keys()):
        if str(k).lower() in SECRET_KEYS:
            event_dict[k] = "[REDACTED]"
    # bearer tokens embedded in strings
    for k, v in list(event_dict.items()):
        if isinstance(v, str) and "Bearer " in v:
            event_dict[k] = re.sub(r"Bearer\s+[A-Za-z0-9\-_.=:+/]+", "Bearer [REDACTED]", v)
    return event_dict


def configure_structlog() -> None:
    _configure_stdlib_logging()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _redact_event_logger,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str):
    return structlog.get_logger(name)
