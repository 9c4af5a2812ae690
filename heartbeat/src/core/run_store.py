"""
Run Store - persistance PostgreSQL des runs heartbeat

Tables (schéma core, migration 001_heartbeat.sql) :
    - heartbeat_runs             : 1 ligne par run, écrite par l'orchestrateur seul
                                   (création RUNNING + UNE mise à jour terminale)
    - heartbeat_notification_log : 1 ligne par tentative de notification
    - notifications              : notifications in-app (1 ligne par insight)
    - activity_feed              : trace d'activité best-effort

Les mises à jour terminales sont gardées par `WHERE status = 'running'` :
un run terminal n'est jamais réécrit.
"""

import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import asyncpg
import structlog

from config.exceptions import PersistenceError
from heartbeat.src.core.heartbeat_models import (
    Channel,
    CheckResult,
    HeartbeatInsight,
    HeartbeatRun,
    RunStatus,
)

logger = structlog.get_logger(__name__)


def _results_json(results: Dict[str, CheckResult]) -> str:
    return json.dumps({key: result.model_dump(mode="json") for key, result in results.items()})


def _insights_json(insights: List[HeartbeatInsight]) -> str:
    return json.dumps([insight.model_dump(mode="json", by_alias=True) for insight in insights])


class RunStore:
    """Accès asyncpg aux tables heartbeat."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def create_run(self, run: HeartbeatRun) -> None:
        """
        Insère le run en état RUNNING (résultats et insights vides).

        Raises:
            PersistenceError: Écriture impossible
        """
        try:
            async with self.db_pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO core.heartbeat_runs
                        (id, user_id, status, started_at, results, insights)
                    VALUES ($1, $2, $3, $4, '{}'::jsonb, '[]'::jsonb)
                    """,
                    run.id,
                    run.user_id,
                    RunStatus.RUNNING.value,
                    run.started_at,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise PersistenceError(f"Failed to create heartbeat run {run.id}: {e}") from e

        logger.debug("heartbeat_run_created", run_id=run.id, user_id=run.user_id)

    async def complete_run(self, run: HeartbeatRun) -> None:
        """
        Persiste la transition RUNNING → COMPLETED avec résultats et insights.

        Raises:
            PersistenceError: Écriture impossible ou run déjà terminal
        """
        await self._finish(
            run,
            """
            UPDATE core.heartbeat_runs
            SET status = $2, completed_at = $3, results = $4::jsonb, insights = $5::jsonb
            WHERE id = $1 AND status = 'running'
            """,
            run.id,
            RunStatus.COMPLETED.value,
            run.completed_at,
            _results_json(run.results),
            _insights_json(run.insights),
        )

    async def fail_run(self, run: HeartbeatRun) -> None:
        """
        Persiste la transition RUNNING → FAILED avec le message d'erreur.

        Raises:
            PersistenceError: Écriture impossible ou run déjà terminal
        """
        await self._finish(
            run,
            """
            UPDATE core.heartbeat_runs
            SET status = $2, completed_at = $3, error = $4
            WHERE id = $1 AND status = 'running'
            """,
            run.id,
            RunStatus.FAILED.value,
            run.completed_at,
            run.error,
        )

    async def _finish(self, run: HeartbeatRun, query: str, *args: Any) -> None:
        try:
            async with self.db_pool.acquire() as conn:
                status = await conn.execute(query, *args)
        except (asyncpg.PostgresError, OSError) as e:
            raise PersistenceError(f"Failed to persist heartbeat run {run.id}: {e}") from e

        # asyncpg retourne le tag de commande ("UPDATE 1")
        if status != "UPDATE 1":
            raise PersistenceError(f"Heartbeat run {run.id} is not running (status tag: {status})")

        logger.debug("heartbeat_run_finished", run_id=run.id, status=run.status.value)

    async def record_notification_channel(self, run_id: str, channel: Channel) -> None:
        """Annote le canal ayant livré la notification (run COMPLETED)."""
        try:
            async with self.db_pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE core.heartbeat_runs
                    SET notified_via = $2
                    WHERE id = $1 AND status = 'completed'
                    """,
                    run_id,
                    channel.value,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise PersistenceError(f"Failed to record notification channel: {e}") from e

    async def get_last_completed_at(self, user_id: str) -> Optional[datetime]:
        """Début du dernier run COMPLETED (fenêtre du checker email)."""
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                """
                SELECT MAX(started_at)
                FROM core.heartbeat_runs
                WHERE user_id = $1 AND status = 'completed'
                """,
                user_id,
            )

    async def get_last_started_at(self, user_id: str) -> Optional[datetime]:
        """Début du dernier run, quel que soit son état (planification)."""
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT MAX(started_at) FROM core.heartbeat_runs WHERE user_id = $1",
                user_id,
            )

    async def list_abandoned_runs(self, older_than: timedelta) -> List[Dict[str, Any]]:
        """
        Runs restés RUNNING plus longtemps que older_than (process tué en cours de run).

        Aucun retry automatique : la liste sert à une réconciliation externe.
        """
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id::text AS id, user_id, started_at
                FROM core.heartbeat_runs
                WHERE status = 'running'
                  AND started_at < NOW() - $1::interval
                ORDER BY started_at ASC
                """,
                older_than,
            )
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def log_notification(
        self,
        run_id: str,
        user_id: str,
        channel: Channel,
        message: str,
        insights: List[HeartbeatInsight],
        delivered: bool,
    ) -> None:
        """Journal d'audit d'une tentative de notification (acknowledged=false)."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO core.heartbeat_notification_log
                    (run_id, user_id, channel, message, insights, delivered, acknowledged)
                VALUES ($1, $2, $3, $4, $5::jsonb, $6, false)
                """,
                run_id,
                user_id,
                channel.value,
                message,
                _insights_json(insights),
                delivered,
            )

    async def create_in_app_notifications(
        self, user_id: str, run_id: str, insights: List[HeartbeatInsight]
    ) -> None:
        """Une notification in-app par insight."""
        records = [
            (
                user_id,
                "heartbeat",
                insight.category.replace("_", " ").capitalize(),
                insight.message,
                insight.urgency.value,
                json.dumps(
                    {
                        "runId": run_id,
                        "category": insight.category,
                        "suggestedAction": insight.suggested_action,
                        "relatedItems": insight.related_items,
                    }
                ),
            )
            for insight in insights
        ]
        async with self.db_pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO core.notifications (user_id, type, title, body, urgency, metadata)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                """,
                records,
            )

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    async def record_activity(
        self,
        user_id: str,
        run_id: str,
        status: RunStatus,
        item_count: int,
        insight_count: int,
    ) -> None:
        """Trace d'activité du run (appelée en tâche détachée)."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO core.activity_feed (user_id, kind, summary, metadata)
                VALUES ($1, 'heartbeat_run', $2, $3::jsonb)
                """,
                user_id,
                f"Heartbeat run {status.value}: {item_count} item(s), {insight_count} insight(s)",
                json.dumps(
                    {
                        "runId": run_id,
                        "status": status.value,
                        "itemCount": item_count,
                        "insightCount": insight_count,
                    }
                ),
            )
