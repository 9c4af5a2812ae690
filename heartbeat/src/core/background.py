"""
Tâches détachées (fire-and-forget)

Les effets de bord best-effort (activity feed, journal de notification)
tournent dans des tâches asyncio détachées : leur échec est loggé mais
n'est jamais rejoint dans le flux principal d'un run.

Usage:
    background = DetachedTasks()
    background.spawn(store.record_activity(...), label="activity")

    # Shutdown daemon / tests uniquement
    await background.drain()
"""

import asyncio
from typing import Awaitable, Set

import structlog

logger = structlog.get_logger(__name__)


class DetachedTasks:
    """Ensemble de tâches détachées dont les échecs sont loggés puis oubliés."""

    def __init__(self) -> None:
        # Références fortes : évite le garbage collection des tâches en vol
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, label: str) -> asyncio.Task:
        """Lance coro en tâche détachée."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, label))
        return task

    def _on_done(self, task: asyncio.Task, label: str) -> None:
        self._tasks.discard(task)

        if task.cancelled():
            logger.debug("detached_task_cancelled", label=label)
            return

        error = task.exception()
        if error is not None:
            logger.warning(
                "detached_task_failed",
                label=label,
                error=str(error),
                error_type=type(error).__name__,
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Attend la fin de toutes les tâches en vol (erreurs déjà loggées)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
