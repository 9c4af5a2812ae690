"""
Sources Postgres - implémentations asyncpg des interfaces de sources

Les services de synchronisation (hors périmètre) alimentent :
    - integrations.connections   : état de connexion par utilisateur/type
    - ingestion.emails           : emails synchronisés
    - ingestion.calendar_events  : événements synchronisés
    - ingestion.external_tasks   : tâches des stores externes
Le store de tâches interne (core.tasks) et les contacts (core.contacts)
n'ont pas d'intégration : ils sont toujours "configurés".
"""

from datetime import date, datetime
from typing import List

import asyncpg

from config.exceptions import IntegrationError, IntegrationNotConfiguredError
from heartbeat.src.integrations.sources import (
    CalendarEvent,
    ContactRecord,
    MailMessage,
    TaskRecord,
)


async def _ensure_connected(conn: asyncpg.Connection, user_id: str, kind: str) -> None:
    """Lève IntegrationNotConfiguredError si aucune connexion active de ce type."""
    connected = await conn.fetchval(
        """
        SELECT EXISTS (
            SELECT 1
            FROM integrations.connections
            WHERE user_id = $1
              AND kind = $2
              AND status = 'connected'
        )
        """,
        user_id,
        kind,
    )
    if not connected:
        raise IntegrationNotConfiguredError(kind, user_id)


async def _fetch(conn: asyncpg.Connection, query: str, *args) -> List[asyncpg.Record]:
    """conn.fetch avec erreurs Postgres converties en IntegrationError."""
    try:
        return await conn.fetch(query, *args)
    except asyncpg.PostgresError as e:
        raise IntegrationError(f"source query failed: {e}") from e


class PostgresMailSource:
    """Emails non lus synchronisés."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def list_unread(self, user_id: str, since: datetime, limit: int) -> List[MailMessage]:
        async with self.db_pool.acquire() as conn:
            await _ensure_connected(conn, user_id, "email")
            rows = await _fetch(
                conn,
                """
                SELECT id::text, thread_id, sender, subject, snippet, received_at
                FROM ingestion.emails
                WHERE user_id = $1
                  AND read = false
                  AND received_at >= $2
                ORDER BY received_at DESC
                LIMIT $3
                """,
                user_id,
                since,
                limit,
            )
        return [MailMessage(**dict(row)) for row in rows]


class PostgresCalendarSource:
    """Événements calendrier synchronisés."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def list_events(
        self, user_id: str, start: datetime, end: datetime, limit: int
    ) -> List[CalendarEvent]:
        async with self.db_pool.acquire() as conn:
            await _ensure_connected(conn, user_id, "calendar")
            rows = await _fetch(
                conn,
                """
                SELECT id::text, title, start_at AS start, end_at AS "end",
                       location, COALESCE(attendees, '{}') AS attendees, conference_link
                FROM ingestion.calendar_events
                WHERE user_id = $1
                  AND start_at < $3
                  AND end_at > $2
                  AND cancelled = false
                ORDER BY start_at ASC
                LIMIT $4
                """,
                user_id,
                start,
                end,
                limit,
            )
        return [CalendarEvent(**dict(row)) for row in rows]


class PostgresTaskSource:
    """Store de tâches interne (toujours disponible)."""

    name = "internal"

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def list_open_tasks(
        self, user_id: str, due_before: datetime, limit: int
    ) -> List[TaskRecord]:
        async with self.db_pool.acquire() as conn:
            rows = await _fetch(
                conn,
                """
                SELECT id::text, title, COALESCE(description, '') AS description,
                       priority, due_at, status, 'internal' AS source
                FROM core.tasks
                WHERE user_id = $1
                  AND status NOT IN ('done', 'cancelled')
                  AND due_at IS NOT NULL
                  AND due_at <= $2
                ORDER BY due_at ASC
                LIMIT $3
                """,
                user_id,
                due_before,
                limit,
            )
        return [TaskRecord(**dict(row)) for row in rows]


class PostgresExternalTaskSource:
    """Tâches synchronisées depuis un store externe (Todoist, Asana, ...)."""

    name = "external"

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def list_open_tasks(
        self, user_id: str, due_before: datetime, limit: int
    ) -> List[TaskRecord]:
        async with self.db_pool.acquire() as conn:
            await _ensure_connected(conn, user_id, "tasks")
            rows = await _fetch(
                conn,
                """
                SELECT external_id AS id, title, COALESCE(description, '') AS description,
                       priority, due_at, status, provider AS source
                FROM ingestion.external_tasks
                WHERE user_id = $1
                  AND completed = false
                  AND due_at IS NOT NULL
                  AND due_at <= $2
                ORDER BY due_at ASC
                LIMIT $3
                """,
                user_id,
                due_before,
                limit,
            )
        return [TaskRecord(**dict(row)) for row in rows]


class PostgresContactSource:
    """Contacts relationnels (core.contacts)."""

    _COLUMNS = """
        id::text, first_name, last_name, company, job_title,
        next_followup_date, last_contacted_at,
        COALESCE(relationship_strength, 0) AS relationship_strength, birthday
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def list_overdue_followups(
        self, user_id: str, before: date, limit: int
    ) -> List[ContactRecord]:
        return await self._list_followups(user_id, "next_followup_date < $2", before, limit)

    async def list_followups_due_on(
        self, user_id: str, day: date, limit: int
    ) -> List[ContactRecord]:
        return await self._list_followups(user_id, "next_followup_date = $2", day, limit)

    async def _list_followups(
        self, user_id: str, date_clause: str, day: date, limit: int
    ) -> List[ContactRecord]:
        async with self.db_pool.acquire() as conn:
            rows = await _fetch(
                conn,
                f"""
                SELECT {self._COLUMNS}
                FROM core.contacts
                WHERE user_id = $1
                  AND is_archived = false
                  AND next_followup_date IS NOT NULL
                  AND {date_clause}
                ORDER BY next_followup_date ASC
                LIMIT $3
                """,
                user_id,
                day,
                limit,
            )
        return [ContactRecord(**dict(row)) for row in rows]

    async def list_cooling(
        self, user_id: str, min_strength: int, contacted_before: datetime, limit: int
    ) -> List[ContactRecord]:
        async with self.db_pool.acquire() as conn:
            rows = await _fetch(
                conn,
                f"""
                SELECT {self._COLUMNS}
                FROM core.contacts
                WHERE user_id = $1
                  AND is_archived = false
                  AND relationship_strength >= $2
                  AND last_contacted_at < $3
                ORDER BY relationship_strength DESC
                LIMIT $4
                """,
                user_id,
                min_strength,
                contacted_before,
                limit,
            )
        return [ContactRecord(**dict(row)) for row in rows]

    async def list_with_birthdays(self, user_id: str, limit: int) -> List[ContactRecord]:
        async with self.db_pool.acquire() as conn:
            rows = await _fetch(
                conn,
                f"""
                SELECT {self._COLUMNS}
                FROM core.contacts
                WHERE user_id = $1
                  AND is_archived = false
                  AND birthday IS NOT NULL
                LIMIT $2
                """,
                user_id,
                limit,
            )
        return [ContactRecord(**dict(row)) for row in rows]
