"""
Structured logging configuration using structlog.

Event keys that can carry a secret are masked before rendering, so a
credential passed to a log call by mistake never reaches the output.
"""
import sys
import logging
from pathlib import Path
from typing import Any, List, Optional
import structlog
from pydantic import SecretStr
from structlog.types import EventDict, Processor

from orchestrator.core.config import Settings, settings as default_settings

MASK = "********"

SENSITIVE_KEYS = frozenset({
    "credential",
    "api_key",
    "admin_key",
    "authorization",
    "x_admin_key",
    "password",
    "token",
})


def mask_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace values of sensitive keys and any SecretStr with a fixed placeholder."""
    for key, value in event_dict.items():
        if key.lower() in SENSITIVE_KEYS and value is not None:
            event_dict[key] = MASK
        elif isinstance(value, SecretStr):
            event_dict[key] = MASK
    return event_dict


def _app_context(config: Settings) -> Processor:
    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict["app"] = config.app_name
        event_dict["env"] = config.app_env
        return event_dict

    return add_app_context


def _handlers(config: Settings) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        log_file = Path(config.log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_file)))
    return handlers


def setup_logging(config: Optional[Settings] = None) -> None:
    """
    Configure stdlib logging and structlog from settings.

    Args:
        config: Settings to read level, format and log file from;
            the environment-derived settings when omitted
    """
    config = config or default_settings

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        handlers=_handlers(config),
    )

    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _app_context(config),
        mask_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if config.log_format == "json":
        processors.extend([
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ])
    else:
        processors.extend([
            structlog.processors.ExceptionRenderer(),
            structlog.dev.ConsoleRenderer(colors=config.is_development)
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)


setup_logging()
