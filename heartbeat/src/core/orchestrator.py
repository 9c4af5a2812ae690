"""
Heartbeat Orchestrator

Exécute UN run heartbeat pour UN utilisateur.

Machine à états du run : running → completed | failed (une seule transition).

Flow:
    1. Création du run RUNNING (résultats vides)
    2. Config effective : défauts ← préférences sauvegardées ← override
    3. Checkers activés exécutés en parallèle (timeout + isolation)
    4. Reasoner → insights (fallback interne, ne fait pas échouer le run)
    5. Persistance COMPLETED (résultats par type + insights)
    6. Notification seulement si un insight dépasse low ou n'est pas "summary"
    7. Canal réellement utilisé annoté sur le run
    8. Trace d'activité détachée (best-effort)
    9. Toute exception non rattrapée → FAILED persisté, run retourné

run_heartbeat() ne propage jamais d'exception à l'appelant.

Usage:
    orchestrator = HeartbeatOrchestrator(run_store, preference_store, registry,
                                         executor, reasoner, notifier)
    run = await orchestrator.run_heartbeat(user_id)
"""

from typing import Any, List, Mapping, Optional

import structlog

from config.logging import bind_run_context
from heartbeat.src.core.background import DetachedTasks
from heartbeat.src.core.check_executor import CheckExecutor
from heartbeat.src.core.check_registry import CheckRegistry
from heartbeat.src.core.heartbeat_config import (
    DEFAULT_HEARTBEAT_CONFIG,
    HeartbeatConfig,
    merge_heartbeat_config,
)
from heartbeat.src.core.heartbeat_models import (
    SUMMARY_CATEGORY,
    HeartbeatInsight,
    HeartbeatRun,
    RunStatus,
    Urgency,
)
from heartbeat.src.core.notifier import HeartbeatNotifier
from heartbeat.src.core.preference_store import PreferenceStore
from heartbeat.src.core.reasoner import InsightReasoner
from heartbeat.src.core.run_store import RunStore

logger = structlog.get_logger(__name__)


def should_notify(insights: List[HeartbeatInsight]) -> bool:
    """True si au moins un insight est au-dessus de low ou hors catégorie summary."""
    return any(
        insight.urgency != Urgency.LOW or insight.category != SUMMARY_CATEGORY
        for insight in insights
    )


class HeartbeatOrchestrator:
    """Orchestrateur d'un run heartbeat (propriétaire unique du run)."""

    def __init__(
        self,
        run_store: RunStore,
        preference_store: PreferenceStore,
        check_registry: CheckRegistry,
        check_executor: CheckExecutor,
        reasoner: InsightReasoner,
        notifier: HeartbeatNotifier,
        background: Optional[DetachedTasks] = None,
        defaults: HeartbeatConfig = DEFAULT_HEARTBEAT_CONFIG,
    ):
        """
        Initialize Heartbeat Orchestrator.

        Args:
            run_store: Persistance des runs
            preference_store: Préférences heartbeat sauvegardées
            check_registry: Checkers disponibles
            check_executor: Fan-out avec timeout / circuit breaker
            reasoner: Synthèse des insights
            notifier: Livraison
            background: Tâches détachées (activité)
            defaults: Config par défaut immuable
        """
        self.run_store = run_store
        self.preference_store = preference_store
        self.check_registry = check_registry
        self.check_executor = check_executor
        self.reasoner = reasoner
        self.notifier = notifier
        self.background = background or DetachedTasks()
        self.defaults = defaults

        logger.info("HeartbeatOrchestrator initialized", checkers=len(check_registry))

    async def run_heartbeat(
        self, user_id: str, config_override: Optional[Mapping[str, Any]] = None
    ) -> HeartbeatRun:
        """
        Exécute un run complet.

        Args:
            user_id: Utilisateur cible
            config_override: Override explicite (gagne sur les préférences)

        Returns:
            HeartbeatRun terminal (COMPLETED ou FAILED)
        """
        run = HeartbeatRun(user_id=user_id)
        with bind_run_context(run_id=run.id, user_id=user_id):
            return await self._execute(run, config_override)

    async def _execute(
        self, run: HeartbeatRun, config_override: Optional[Mapping[str, Any]]
    ) -> HeartbeatRun:
        user_id = run.user_id
        log = logger.bind(run_id=run.id, user_id=user_id)
        log.info("heartbeat_run_started")

        try:
            await self.run_store.create_run(run)

            saved = await self.preference_store.get_heartbeat_preferences(user_id)
            config = merge_heartbeat_config(saved, config_override, self.defaults)

            checkers = self.check_registry.get_enabled(config)
            results = await self.check_executor.execute_all(checkers, user_id)

            insights = await self.reasoner.generate_insights(list(results.values()))

            completed = run.complete(results, insights)
            await self.run_store.complete_run(completed)
            run = completed

            item_count = sum(len(result.items) for result in results.values())
            log.info(
                "heartbeat_run_completed",
                checks=sorted(results),
                items=item_count,
                insights=len(insights),
            )

            if should_notify(insights):
                outcome = await self.notifier.notify(user_id, insights, run.id, config)
                if outcome.delivered:
                    run = run.with_notification(outcome.channel)
                    await self.run_store.record_notification_channel(run.id, outcome.channel)
            else:
                log.info("heartbeat_notification_skipped")

            self.background.spawn(
                self.run_store.record_activity(
                    user_id=user_id,
                    run_id=run.id,
                    status=RunStatus.COMPLETED,
                    item_count=item_count,
                    insight_count=len(insights),
                ),
                label="heartbeat_activity",
            )
            return run

        except Exception as e:
            log.error(
                "heartbeat_run_error",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return await self._fail(run, str(e))

    async def _fail(self, run: HeartbeatRun, error: str) -> HeartbeatRun:
        """Transition FAILED + persistance best-effort."""
        if run.is_terminal:
            # Erreur après persistance COMPLETED : le run terminal n'est pas réécrit
            logger.warning(
                "heartbeat_run_error_after_completion",
                run_id=run.id,
                status=run.status.value,
                error=error,
            )
            return run

        failed = run.fail(error)
        try:
            await self.run_store.fail_run(failed)
        except Exception as e:
            logger.error(
                "heartbeat_run_failure_not_persisted",
                run_id=run.id,
                error=str(e),
                error_type=type(e).__name__,
            )
        return failed
