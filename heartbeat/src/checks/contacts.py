"""
Heartbeat Check - Contacts

Relances et relations à entretenir :
- Relance en retard          → HIGH si > 7 jours, sinon MEDIUM (followup_overdue)
- Relance prévue aujourd'hui → MEDIUM (followup_today)
- Relation qui refroidit (force ≥ 60, dernier contact > 30 j)
                             → HIGH si > 60 jours, sinon MEDIUM (relationship_cooling)
- Anniversaire sous 7 jours  → MEDIUM si ≤ 1 jour, sinon LOW (birthday)

Urgence globale : HIGH si une relance en retard, MEDIUM si relation qui
refroidit ou relance du jour, LOW sinon.
"""

from datetime import date, datetime, timedelta
from typing import List, Optional

import structlog

from heartbeat.src.core.checker import Checker
from heartbeat.src.core.heartbeat_models import CheckItem, CheckResult, Urgency
from heartbeat.src.integrations.sources import ContactRecord, ContactSource

logger = structlog.get_logger(__name__)


FOLLOWUP_LIMIT = 10
COOLING_LIMIT = 5
BIRTHDAY_SCAN_LIMIT = 100

FOLLOWUP_HIGH_AFTER_DAYS = 7
COOLING_MIN_STRENGTH = 60
COOLING_AFTER_DAYS = 30
COOLING_HIGH_AFTER_DAYS = 60
BIRTHDAY_WINDOW_DAYS = 7


class ContactChecker(Checker):
    """Relances, relations qui refroidissent, anniversaires."""

    check_type = "contacts"
    description = "Contact follow-ups, cooling relationships and birthdays"
    integration_label = "Contacts"

    def __init__(self, contact_source: ContactSource, **kwargs):
        super().__init__(**kwargs)
        self.contact_source = contact_source

    async def _collect(self, user_id: str) -> CheckResult:
        now = self.clock()
        today = now.date()
        items: List[CheckItem] = []

        overdue = await self.contact_source.list_overdue_followups(
            user_id, before=today, limit=FOLLOWUP_LIMIT
        )
        due_today = await self.contact_source.list_followups_due_on(
            user_id, day=today, limit=FOLLOWUP_LIMIT
        )

        for contact in overdue:
            items.append(self._overdue_item(contact, today))
        for contact in due_today:
            items.append(self._today_item(contact))

        cooling = await self.contact_source.list_cooling(
            user_id,
            min_strength=COOLING_MIN_STRENGTH,
            contacted_before=now - timedelta(days=COOLING_AFTER_DAYS),
            limit=COOLING_LIMIT,
        )
        cooling_items = [
            self._cooling_item(contact, now) for contact in cooling if contact.last_contacted_at
        ]
        items.extend(cooling_items)

        birthday_items = await self._birthday_items(user_id, today)
        items.extend(birthday_items)

        overdue_count = len(overdue)
        today_count = len(due_today)

        if overdue_count:
            urgency = Urgency.HIGH
        elif cooling_items or today_count:
            urgency = Urgency.MEDIUM
        else:
            urgency = Urgency.LOW

        parts = []
        if overdue_count:
            parts.append(f"{overdue_count} overdue follow-up(s).")
        if today_count:
            parts.append(f"{today_count} follow-up(s) due today.")
        if cooling_items:
            parts.append(f"{len(cooling_items)} relationship(s) cooling.")
        if birthday_items:
            parts.append(f"{len(birthday_items)} upcoming birthday(s).")
        summary = " ".join(parts) or "No contacts need attention right now."

        return CheckResult(type=self.check_type, items=items, summary=summary, urgency=urgency)

    def _overdue_item(self, contact: ContactRecord, today: date) -> CheckItem:
        days_overdue = (today - contact.next_followup_date).days
        return CheckItem(
            title=f"Follow-up overdue ({days_overdue}d): {contact.full_name}",
            description=describe_contact(contact),
            urgency=Urgency.HIGH if days_overdue > FOLLOWUP_HIGH_AFTER_DAYS else Urgency.MEDIUM,
            category="followup_overdue",
            metadata={
                "contactId": contact.id,
                "contactName": contact.full_name,
                "followupDate": contact.next_followup_date.isoformat(),
                "daysOverdue": days_overdue,
                "relationshipStrength": contact.relationship_strength,
            },
        )

    def _today_item(self, contact: ContactRecord) -> CheckItem:
        return CheckItem(
            title=f"Follow-up due today: {contact.full_name}",
            description=describe_contact(contact),
            urgency=Urgency.MEDIUM,
            category="followup_today",
            metadata={
                "contactId": contact.id,
                "contactName": contact.full_name,
                "followupDate": contact.next_followup_date.isoformat(),
                "relationshipStrength": contact.relationship_strength,
            },
        )

    def _cooling_item(self, contact: ContactRecord, now: datetime) -> CheckItem:
        days_since = (now - contact.last_contacted_at).days
        return CheckItem(
            title=f"Relationship cooling: {contact.full_name} ({days_since}d ago)",
            description=(
                f"{describe_contact(contact)} - Last contacted {days_since} days ago. "
                f"Relationship strength: {contact.relationship_strength}/100."
            ),
            urgency=Urgency.HIGH if days_since > COOLING_HIGH_AFTER_DAYS else Urgency.MEDIUM,
            category="relationship_cooling",
            metadata={
                "contactId": contact.id,
                "contactName": contact.full_name,
                "daysSinceContact": days_since,
                "relationshipStrength": contact.relationship_strength,
                "lastContactedAt": contact.last_contacted_at.isoformat(),
            },
        )

    async def _birthday_items(self, user_id: str, today: date) -> List[CheckItem]:
        """Anniversaires dans les 7 jours. Best-effort : un échec n'annule pas le check."""
        try:
            contacts = await self.contact_source.list_with_birthdays(
                user_id, limit=BIRTHDAY_SCAN_LIMIT
            )
        except Exception as e:
            logger.debug("birthday_check_skipped", user_id=user_id, error=str(e))
            return []

        items = []
        for contact in contacts:
            days_until = days_until_birthday(contact.birthday, today)
            if days_until is None or days_until > BIRTHDAY_WINDOW_DAYS:
                continue

            when = "today" if days_until == 0 else f"in {days_until} day(s)"
            company = f" at {contact.company}" if contact.company else ""
            items.append(
                CheckItem(
                    title=(
                        f"Birthday today: {contact.full_name}!"
                        if days_until == 0
                        else f"Birthday in {days_until} day(s): {contact.full_name}"
                    ),
                    description=f"{contact.full_name}{company} has a birthday {when}.",
                    urgency=Urgency.MEDIUM if days_until <= 1 else Urgency.LOW,
                    category="birthday",
                    metadata={
                        "contactId": contact.id,
                        "contactName": contact.full_name,
                        "birthday": contact.birthday.isoformat(),
                        "daysUntil": days_until,
                    },
                )
            )
        return items


def days_until_birthday(birthday: Optional[date], today: date) -> Optional[int]:
    """
    Jours avant le prochain anniversaire (0 = aujourd'hui).

    Un 29 février est fêté le 28 février les années non bissextiles.
    """
    if birthday is None:
        return None

    for year in (today.year, today.year + 1):
        try:
            candidate = birthday.replace(year=year)
        except ValueError:
            candidate = date(year, 2, 28)
        if candidate >= today:
            return (candidate - today).days
    return None


def describe_contact(contact: ContactRecord) -> str:
    """'Nom - Poste at Société' (parties absentes omises)."""
    parts = [contact.full_name]
    if contact.job_title and contact.company:
        parts.append(f"{contact.job_title} at {contact.company}")
    elif contact.company:
        parts.append(contact.company)
    elif contact.job_title:
        parts.append(contact.job_title)
    return " - ".join(parts)
