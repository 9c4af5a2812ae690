"""
Heartbeat Check - Tâches dues / en retard

Agrège le store interne et les stores externes synchronisés.
Un store externe non connecté est ignoré silencieusement ; le check
n'échoue que si AUCUNE source n'a répondu.

Seuils :
- En retard > 3 jours      → CRITICAL (overdue_task)
- En retard ≤ 3 jours      → HIGH     (overdue_task)
- Due dans ≤ 24h           → MEDIUM   (due_soon), HIGH si priorité high/urgent
- Due dans ≤ 72h           → LOW      (due_soon)
"""

from datetime import datetime, timedelta
from typing import List, Sequence

import structlog

from config.exceptions import IntegrationNotConfiguredError
from heartbeat.src.core.checker import Checker
from heartbeat.src.core.heartbeat_models import CheckItem, CheckResult, Urgency, max_urgency
from heartbeat.src.integrations.sources import TaskRecord, TaskSource

logger = structlog.get_logger(__name__)


PAGE_SIZE = 20
HORIZON = timedelta(hours=72)
DUE_SOON = timedelta(hours=24)
CRITICAL_OVERDUE_DAYS = 3
HIGH_PRIORITIES = ("high", "urgent")


class TaskChecker(Checker):
    """Tâches en retard ou proches de l'échéance."""

    check_type = "tasks"
    description = "Overdue and due-soon tasks (internal + synced stores)"
    integration_label = "Task manager"

    def __init__(self, task_sources: Sequence[TaskSource], **kwargs):
        super().__init__(**kwargs)
        self.task_sources = list(task_sources)

    async def _collect(self, user_id: str) -> CheckResult:
        now = self.clock()
        tasks = await self._fetch_all(user_id, now)

        items = [self._to_item(task, now) for task in sorted(tasks, key=lambda t: t.due_at)]

        overdue = [i for i in items if i.category == "overdue_task"]
        due_soon = [i for i in items if i.category == "due_soon"]

        if not items:
            summary = "No overdue or upcoming tasks."
        else:
            parts = []
            if overdue:
                parts.append(f"{len(overdue)} overdue task(s)")
            if due_soon:
                parts.append(f"{len(due_soon)} task(s) due in the next 72 hours")
            summary = ", ".join(parts) + "."

        return CheckResult(
            type=self.check_type,
            items=items,
            summary=summary,
            urgency=max_urgency([item.urgency for item in items]),
        )

    async def _fetch_all(self, user_id: str, now: datetime) -> List[TaskRecord]:
        """Interroge chaque source ; lève seulement si aucune n'a répondu."""
        tasks: List[TaskRecord] = []
        seen = set()
        answered = 0
        errors: List[Exception] = []

        for source in self.task_sources:
            source_name = getattr(source, "name", type(source).__name__)
            try:
                records = await source.list_open_tasks(
                    user_id, due_before=now + HORIZON, limit=PAGE_SIZE
                )
            except IntegrationNotConfiguredError:
                logger.debug("task_source_not_configured", source=source_name, user_id=user_id)
                continue
            except Exception as e:
                logger.warning(
                    "task_source_failed",
                    source=source_name,
                    user_id=user_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                errors.append(e)
                continue

            answered += 1
            for record in records:
                key = (record.source, record.id)
                if key not in seen:
                    seen.add(key)
                    tasks.append(record)

        if answered == 0:
            if errors:
                raise errors[0]
            raise IntegrationNotConfiguredError("tasks", user_id)

        return tasks

    def _to_item(self, task: TaskRecord, now: datetime) -> CheckItem:
        delta = now - task.due_at
        metadata = {
            "taskId": task.id,
            "source": task.source,
            "priority": task.priority,
            "dueAt": task.due_at.isoformat(),
            "status": task.status,
        }

        if delta > timedelta(0):
            days_overdue = delta.days
            metadata["daysOverdue"] = days_overdue
            urgency = Urgency.CRITICAL if days_overdue > CRITICAL_OVERDUE_DAYS else Urgency.HIGH
            title = (
                f"Overdue ({days_overdue}d): {task.title}"
                if days_overdue
                else f"Overdue: {task.title}"
            )
            return CheckItem(
                title=title,
                description=task.description,
                urgency=urgency,
                category="overdue_task",
                metadata=metadata,
            )

        hours_until = int((-delta).total_seconds() // 3600)
        metadata["hoursUntilDue"] = hours_until

        if -delta <= DUE_SOON:
            urgency = Urgency.HIGH if task.priority.lower() in HIGH_PRIORITIES else Urgency.MEDIUM
        else:
            urgency = Urgency.LOW

        return CheckItem(
            title=f"Due in {hours_until}h: {task.title}",
            description=task.description,
            urgency=urgency,
            category="due_soon",
            metadata=metadata,
        )
