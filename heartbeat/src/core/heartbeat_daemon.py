"""
Heartbeat Daemon

Point d'entrée du heartbeat planifié. Parcourt les utilisateurs dont le
heartbeat est activé et lance un run pour chaque planification due,
séquentiellement.

Modes:
    - daemon : boucle infinie, un passage toutes les N minutes
    - cron   : un seul passage puis exit

Usage:
    python -m heartbeat.src.core.heartbeat_daemon

Environment Variables:
    HEARTBEAT_ENABLED: true/false (default: true)
    HEARTBEAT_MODE: daemon/cron (default: daemon)
    HEARTBEAT_DAEMON_INTERVAL_MINUTES: Minutes entre passages (default: 15)
    DATABASE_URL: PostgreSQL connection string
    REDIS_URL: Redis connection string (optionnel, circuit breakers)
    ANTHROPIC_API_KEY: optionnel (absent = fallback heuristique seul)
    LOG_LEVEL / LOG_FORMAT / HEARTBEAT_ENV: logging (voir config/logging.py)
"""

import asyncio
import signal
import sys
from typing import Dict, Optional

import asyncpg
import structlog
from anthropic import AsyncAnthropic
from redis.asyncio import Redis

from config.exceptions import ConfigurationError
from config.logging import configure_from_settings
from config.settings import HeartbeatSettings, get_settings
from heartbeat.src.adapters.channels import ChannelAdapter, build_channel_adapters
from heartbeat.src.checks import register_default_checkers
from heartbeat.src.core.background import DetachedTasks
from heartbeat.src.core.check_executor import CheckExecutor
from heartbeat.src.core.check_registry import CheckRegistry
from heartbeat.src.core.checker import utcnow
from heartbeat.src.core.heartbeat_config import is_run_due, merge_heartbeat_config
from heartbeat.src.core.heartbeat_models import Channel, RunStatus
from heartbeat.src.core.notifier import HeartbeatNotifier
from heartbeat.src.core.orchestrator import HeartbeatOrchestrator
from heartbeat.src.core.preference_store import PreferenceStore
from heartbeat.src.core.reasoner import InsightReasoner
from heartbeat.src.core.run_store import RunStore

logger = structlog.get_logger(__name__)


class HeartbeatDaemon:
    """Daemon heartbeat avec gestion graceful shutdown."""

    def __init__(self, settings: Optional[HeartbeatSettings] = None):
        self.settings = settings or get_settings()
        self.enabled = self.settings.heartbeat_enabled
        self.mode = self.settings.heartbeat_mode
        self.interval_minutes = self.settings.heartbeat_daemon_interval_minutes

        self.db_pool: Optional[asyncpg.Pool] = None
        self.redis_client: Optional[Redis] = None
        self.adapters: Dict[Channel, ChannelAdapter] = {}
        self.background = DetachedTasks()
        self.run_store: Optional[RunStore] = None
        self.preference_store: Optional[PreferenceStore] = None
        self.orchestrator: Optional[HeartbeatOrchestrator] = None
        self.shutdown_event = asyncio.Event()

        logger.info(
            "HeartbeatDaemon initialized",
            enabled=self.enabled,
            mode=self.mode,
            interval_minutes=self.interval_minutes,
        )

    async def connect(self) -> None:
        """
        Connect to PostgreSQL (+ Redis optionnel) et construit la stack.

        Raises:
            ConfigurationError: DATABASE_URL absent
        """
        if not self.settings.database_url:
            raise ConfigurationError("DATABASE_URL environment variable not set")

        self.db_pool = await asyncpg.create_pool(self.settings.database_url, min_size=2, max_size=5)
        logger.info("Connected to PostgreSQL")

        if self.settings.redis_url:
            self.redis_client = Redis.from_url(self.settings.redis_url, decode_responses=True)
            logger.info("Connected to Redis")
        else:
            logger.warning("REDIS_URL not set - circuit breakers disabled")

        self._init_heartbeat_stack()

    def _init_heartbeat_stack(self) -> None:
        """Construit registry, executor, reasoner, notifier, orchestrateur."""
        self.run_store = RunStore(self.db_pool)
        self.preference_store = PreferenceStore(self.db_pool)

        registry = CheckRegistry()
        register_default_checkers(
            registry, self.db_pool, last_run_lookup=self.run_store.get_last_completed_at
        )

        executor = CheckExecutor(
            redis_client=self.redis_client,
            timeout_seconds=self.settings.heartbeat_check_timeout_seconds,
            max_concurrency=self.settings.heartbeat_max_concurrent_checks,
        )

        llm_client = None
        if self.settings.anthropic_api_key:
            llm_client = AsyncAnthropic(api_key=self.settings.anthropic_api_key)
        else:
            logger.warning("ANTHROPIC_API_KEY not set - AI reasoning disabled")

        reasoner = InsightReasoner(
            llm_client=llm_client,
            redis_client=self.redis_client,
            model=self.settings.heartbeat_llm_model,
            timeout_seconds=self.settings.heartbeat_llm_timeout_seconds,
            max_insights=self.settings.heartbeat_max_insights,
        )

        self.adapters = build_channel_adapters(self.settings)
        notifier = HeartbeatNotifier(
            preference_store=self.preference_store,
            run_store=self.run_store,
            adapters=self.adapters,
            background=self.background,
        )

        self.orchestrator = HeartbeatOrchestrator(
            run_store=self.run_store,
            preference_store=self.preference_store,
            check_registry=registry,
            check_executor=executor,
            reasoner=reasoner,
            notifier=notifier,
            background=self.background,
        )
        logger.info("HeartbeatOrchestrator ready", checkers=len(registry))

    async def run_due_heartbeats(self) -> Dict[str, int]:
        """
        Un passage : lance séquentiellement les runs dont la planification est due.

        Returns:
            Dict compteurs (users, runs, completed, failed)
        """
        stats = {"users": 0, "runs": 0, "completed": 0, "failed": 0}
        now = utcnow()

        users = await self.preference_store.list_heartbeat_users()
        stats["users"] = len(users)

        for user_id, saved in users:
            if self.shutdown_event.is_set():
                break

            try:
                config = merge_heartbeat_config(saved)
            except ConfigurationError as e:
                logger.warning("heartbeat_user_config_invalid", user_id=user_id, error=str(e))
                continue

            last_run_at = await self.run_store.get_last_started_at(user_id)
            if not is_run_due(config.schedule, last_run_at, now):
                continue

            run = await self.orchestrator.run_heartbeat(user_id)
            stats["runs"] += 1
            if run.status == RunStatus.COMPLETED:
                stats["completed"] += 1
            else:
                stats["failed"] += 1

        logger.info("heartbeat_pass_completed", **stats)
        return stats

    async def run(self) -> None:
        """Run daemon (mode daemon ou one-shot selon config)."""
        if not self.enabled:
            logger.warning("Heartbeat disabled (HEARTBEAT_ENABLED=false)")
            return

        if self.mode == "daemon":
            interval_seconds = self.interval_minutes * 60
            logger.info("Starting Heartbeat daemon mode", interval_minutes=self.interval_minutes)

            while not self.shutdown_event.is_set():
                try:
                    await self.run_due_heartbeats()
                except Exception as e:
                    logger.error("heartbeat_pass_failed", error=str(e), exc_info=True)

                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), interval_seconds)
                except asyncio.TimeoutError:
                    continue

        elif self.mode == "cron":
            logger.info("Running Heartbeat one-shot mode (cron)")
            await self.run_due_heartbeats()

        else:
            raise ConfigurationError(f"Invalid HEARTBEAT_MODE: {self.mode}")

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        logger.info("Shutting down HeartbeatDaemon...")

        await self.background.drain()

        for adapter in self.adapters.values():
            close = getattr(adapter, "aclose", None)
            if close is not None:
                await close()

        if self.redis_client:
            await self.redis_client.aclose()
            logger.info("Redis connection closed")

        if self.db_pool:
            await self.db_pool.close()
            logger.info("PostgreSQL pool closed")

        logger.info("HeartbeatDaemon shutdown complete")

    def handle_signal(self, sig: signal.Signals) -> None:
        """Handle SIGTERM/SIGINT for graceful shutdown."""
        logger.info("Signal received", signal=sig.name)
        self.shutdown_event.set()


async def main() -> None:
    """Main entry point."""
    configure_from_settings()
    daemon = HeartbeatDaemon()

    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: daemon.handle_signal(s))
    except NotImplementedError:
        logger.warning("Signal handlers not supported on this platform (Windows)")

    try:
        await daemon.connect()
        await daemon.run()

    except Exception as e:
        logger.error("HeartbeatDaemon fatal error", error=str(e), exc_info=True)
        sys.exit(1)

    finally:
        await daemon.shutdown()


def cli() -> None:
    """Console script heartbeat-daemon."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received, exiting...")
        sys.exit(0)


if __name__ == "__main__":
    cli()
