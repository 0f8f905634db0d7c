"""structlog setup for the ingestion service.

Every event passes through ``redact_sensitive`` so bearer tokens, the webhook
secret and message bodies never reach the console or the JSON log file.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping, Optional

import structlog

REDACTED = "[redacted]"

# Event keys whose values must never be logged
SENSITIVE_KEYS = frozenset({
    "authorization",
    "google_token",
    "token",
    "secret",
    "webhook_secret",
    "api_key",
    "body",
    "body_text",
    "content",
})

NOISY_LOGGERS = ("httpcore", "httpx", "urllib3", "sqlalchemy.engine", "pinecone", "openai")


def redact_sensitive(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS and event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def _formatter(
    renderer: structlog.types.Processor, pre_chain: list[structlog.types.Processor]
) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Route structlog and stdlib logging through the same handlers.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        log_file: Optional path for an additional JSON-lines log.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_sensitive,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    handlers[0].setFormatter(
        _formatter(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()), pre_chain)
    )
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), pre_chain))
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(log_level)
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
