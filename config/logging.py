"""
Heartbeat - Configuration structlog

Logs JSON (prod) ou console (dev), avec :
- contexte du run (run_id, user_id) propagé via contextvars jusqu'aux
  checkers, au notifier et aux tâches détachées
- masquage des secrets passés en champs de log
- bibliothèques bavardes (httpx, asyncpg...) limitées à WARNING

Usage:
    from config.logging import configure_from_settings, bind_run_context

    configure_from_settings()

    with bind_run_context(run_id=run.id, user_id=user_id):
        logger.info("heartbeat_run_started")  # run_id/user_id inclus
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from config.settings import HeartbeatSettings, get_settings

APP_NAME = "heartbeat"

NOISY_LOGGERS = ("httpx", "httpcore", "asyncpg", "telegram", "anthropic")

SECRET_KEY_MARKERS = ("token", "api_key", "password", "secret", "authorization")
REDACTED = "***"


def app_context(environment: str) -> Processor:
    """Processor ajoutant app + environment à chaque event."""

    def add_app_context(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("app", APP_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_app_context


def redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Masque la valeur des champs dont le nom évoque un credential."""
    for key in event_dict:
        lowered = key.lower()
        if any(marker in lowered for marker in SECRET_KEY_MARKERS):
            event_dict[key] = REDACTED
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    enable_colors: bool = False,
    environment: str = "development",
) -> None:
    """
    Configure structlog + logging stdlib pour le heartbeat.

    Args:
        level: Niveau de log (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: True = JSON (prod), False = console lisible (dev)
        enable_colors: Colorise la console (dev uniquement)
        environment: Valeur du champ "environment" de chaque event
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level, force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        app_context(environment),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=enable_colors))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def configure_from_settings(settings: Optional[HeartbeatSettings] = None) -> None:
    """Configure structlog depuis LOG_LEVEL / LOG_FORMAT (json|console) / HEARTBEAT_ENV."""
    settings = settings or get_settings()
    json_format = settings.log_format.lower() != "console"
    configure_logging(
        level=settings.log_level,
        json_format=json_format,
        enable_colors=not json_format and sys.stdout.isatty(),
        environment=settings.heartbeat_env,
    )


@contextmanager
def bind_run_context(run_id: str, user_id: str) -> Iterator[None]:
    """Attache run_id/user_id à tous les logs émis dans le bloc (tâches filles incluses)."""
    with structlog.contextvars.bound_contextvars(run_id=run_id, user_id=user_id):
        yield
