"""
Structured logging configuration using structlog.

JSON lines in production, colored console output elsewhere or at DEBUG.
Request-scoped trade fields (user, mode, action) are carried through
contextvars and merged into every record, including stdlib ``logging`` calls.
"""

import logging
import sys
from typing import Any, MutableMapping, Optional

import structlog

from .config import Settings, settings as default_settings

# Fields that must never reach a log sink
SENSITIVE_KEYS = frozenset({"encrypted_private_key", "private_key", "mnemonic", "seed"})

NOISY_LOGGERS = ("httpcore", "httpx", "redis")


def redact_secrets(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def setup_logging(log_level: Optional[str] = None, config: Optional[Settings] = None) -> None:
    """Route structlog and stdlib logging through one formatter.

    Args:
        log_level: Override log level (default: from settings.log_level)
        config: Settings to read level and environment from
    """
    config = config or default_settings
    level = getattr(logging, (log_level or config.log_level).upper(), logging.INFO)
    use_console = level == logging.DEBUG or not config.is_production

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if use_console:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*shared_processors, structlog.stdlib.ExtraAdder()],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_trade_context(**values: object) -> None:
    """Attach request-scoped fields (user, mode, action) to every log line."""
    structlog.contextvars.bind_contextvars(**values)


def clear_trade_context(*keys: str) -> None:
    """Drop the named request fields, or every bound field when none are given."""
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()
