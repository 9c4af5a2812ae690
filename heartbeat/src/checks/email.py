"""
Heartbeat Check - Emails non lus

Liste les emails non lus reçus depuis le dernier run complété
(fenêtre par défaut 24h si aucun run précédent).

Seuils :
- Mot-clé urgent (sujet/snippet) → HIGH (urgent_email)
- Autre                          → LOW  (unread_email)

Urgence globale : HIGH si un urgent, MEDIUM si > 10 non lus, LOW sinon.
"""

from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

import structlog

from config.exceptions import IntegrationNotConfiguredError
from heartbeat.src.core.checker import Checker
from heartbeat.src.core.heartbeat_models import CheckItem, CheckResult, Urgency
from heartbeat.src.integrations.sources import MailMessage, MailSource

logger = structlog.get_logger(__name__)


URGENT_KEYWORDS = (
    "urgent",
    "asap",
    "immediately",
    "action required",
    "deadline",
    "overdue",
    "final notice",
)

PAGE_SIZE = 20
DEFAULT_LOOKBACK = timedelta(hours=24)
MAX_LOOKBACK = timedelta(days=7)
BUSY_INBOX_THRESHOLD = 10

LastRunLookup = Callable[[str], Awaitable[Optional[datetime]]]


class EmailChecker(Checker):
    """Emails non lus depuis le dernier run."""

    check_type = "email"
    description = "Unread email since last heartbeat"
    integration_label = "Email"

    def __init__(
        self,
        mail_source: Optional[MailSource],
        last_run_lookup: Optional[LastRunLookup] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.mail_source = mail_source
        self.last_run_lookup = last_run_lookup

    async def _collect(self, user_id: str) -> CheckResult:
        if self.mail_source is None:
            raise IntegrationNotConfiguredError("email", user_id)

        now = self.clock()
        since = await self._since(user_id, now)

        messages = await self.mail_source.list_unread(user_id, since=since, limit=PAGE_SIZE)
        items = [self._to_item(message, now) for message in messages]

        urgent = [i for i in items if i.category == "urgent_email"]

        if urgent:
            urgency = Urgency.HIGH
        elif len(items) > BUSY_INBOX_THRESHOLD:
            urgency = Urgency.MEDIUM
        else:
            urgency = Urgency.LOW

        if not items:
            summary = "No new unread email since last check."
        else:
            summary = f"{len(items)} unread email(s)"
            if urgent:
                summary += f", {len(urgent)} look urgent"
            summary += "."

        logger.debug("email_check_done", user_id=user_id, unread=len(items), urgent=len(urgent))

        return CheckResult(type=self.check_type, items=items, summary=summary, urgency=urgency)

    async def _since(self, user_id: str, now: datetime) -> datetime:
        """Début de fenêtre : dernier run complété, borné à MAX_LOOKBACK."""
        last_run_at = None
        if self.last_run_lookup is not None:
            last_run_at = await self.last_run_lookup(user_id)

        if last_run_at is None:
            return now - DEFAULT_LOOKBACK
        return max(last_run_at, now - MAX_LOOKBACK)

    def _to_item(self, message: MailMessage, now: datetime) -> CheckItem:
        age = now - message.received_at
        hours_old = max(0, int(age.total_seconds() // 3600))
        sender = message.sender or "unknown sender"
        subject = message.subject or "(no subject)"

        if _is_urgent(message):
            urgency, category = Urgency.HIGH, "urgent_email"
            title = f"Urgent email from {sender}: {subject}"
        else:
            urgency, category = Urgency.LOW, "unread_email"
            title = f"Unread email from {sender}: {subject}"

        return CheckItem(
            title=title,
            description=message.snippet[:200],
            urgency=urgency,
            category=category,
            metadata={
                "messageId": message.id,
                "threadId": message.thread_id,
                "sender": sender,
                "receivedAt": message.received_at.isoformat(),
                "hoursOld": hours_old,
            },
        )


def _is_urgent(message: MailMessage) -> bool:
    haystack = f"{message.subject} {message.snippet}".lower()
    return any(keyword in haystack for keyword in URGENT_KEYWORDS)

