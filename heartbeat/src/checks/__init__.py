"""
Checkers heartbeat par défaut

    - email    : emails non lus depuis le dernier run
    - calendar : événements 24h + conflits
    - tasks    : tâches en retard / dues (store interne + stores synchronisés)
    - contacts : relances, relations qui refroidissent, anniversaires

Usage:
    from heartbeat.src.checks import register_default_checkers

    register_default_checkers(registry, db_pool, last_run_lookup=run_store.get_last_completed_at)
"""

from typing import Optional

import asyncpg

from heartbeat.src.core.check_registry import CheckRegistry
from heartbeat.src.integrations.postgres_sources import (
    PostgresCalendarSource,
    PostgresContactSource,
    PostgresExternalTaskSource,
    PostgresMailSource,
    PostgresTaskSource,
)

from .calendar import CalendarChecker
from .contacts import ContactChecker
from .email import EmailChecker, LastRunLookup
from .tasks import TaskChecker


def register_default_checkers(
    registry: CheckRegistry,
    db_pool: asyncpg.Pool,
    last_run_lookup: Optional[LastRunLookup] = None,
) -> None:
    """
    Enregistre les 4 checkers par défaut, adossés aux tables de synchronisation.

    Args:
        registry: CheckRegistry cible
        db_pool: Pool PostgreSQL
        last_run_lookup: Date du dernier run complété (fenêtre email)
    """
    registry.register(
        EmailChecker(mail_source=PostgresMailSource(db_pool), last_run_lookup=last_run_lookup)
    )
    registry.register(CalendarChecker(calendar_source=PostgresCalendarSource(db_pool)))
    registry.register(
        TaskChecker(
            task_sources=[PostgresTaskSource(db_pool), PostgresExternalTaskSource(db_pool)]
        )
    )
    registry.register(ContactChecker(contact_source=PostgresContactSource(db_pool)))


__all__ = [
    "CalendarChecker",
    "ContactChecker",
    "EmailChecker",
    "TaskChecker",
    "register_default_checkers",
]
