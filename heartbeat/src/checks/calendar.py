"""
Heartbeat Check - Calendrier (24 prochaines heures)

Un item par événement, urgence selon le délai avant le début :
- ≤ 15 min → CRITICAL (imminent_event)
- ≤ 60 min → HIGH     (upcoming_event)
- ≤ 4 h    → MEDIUM   (upcoming_event)
- sinon    → LOW      (upcoming_event)
- déjà commencé → LOW (ongoing_event)

Puis détection de chevauchements deux à deux (O(n²), n ≤ PAGE_SIZE) :
chaque paire qui se chevauche strictement ajoute un item
scheduling_conflict d'urgence HIGH. Deux événements qui se touchent
(10h-11h / 11h-12h) ne sont pas en conflit.
"""

from datetime import datetime, timedelta
from typing import List, Optional

import structlog

from config.exceptions import IntegrationNotConfiguredError
from heartbeat.src.core.checker import Checker
from heartbeat.src.core.heartbeat_models import CheckItem, CheckResult, Urgency, max_urgency
from heartbeat.src.integrations.sources import CalendarEvent, CalendarSource

logger = structlog.get_logger(__name__)


PAGE_SIZE = 20
WINDOW = timedelta(hours=24)

IMMINENT_MINUTES = 15
SOON_MINUTES = 60
LATER_TODAY_MINUTES = 240


class CalendarChecker(Checker):
    """Événements à venir + conflits d'agenda."""

    check_type = "calendar"
    description = "Upcoming events and scheduling conflicts (next 24h)"
    integration_label = "Calendar"

    def __init__(self, calendar_source: Optional[CalendarSource], **kwargs):
        super().__init__(**kwargs)
        self.calendar_source = calendar_source

    async def _collect(self, user_id: str) -> CheckResult:
        if self.calendar_source is None:
            raise IntegrationNotConfiguredError("calendar", user_id)

        now = self.clock()
        events = await self.calendar_source.list_events(
            user_id, start=now, end=now + WINDOW, limit=PAGE_SIZE
        )
        events = sorted(events, key=lambda e: e.start)

        items = [self._event_item(event, now) for event in events]
        conflicts = detect_conflicts(events)
        items.extend(conflicts)

        urgency = max_urgency([item.urgency for item in items])

        logger.debug(
            "calendar_check_done",
            user_id=user_id,
            events=len(events),
            conflicts=len(conflicts),
        )

        return CheckResult(
            type=self.check_type,
            items=items,
            summary=_summarize(events, conflicts),
            urgency=urgency,
        )

    def _event_item(self, event: CalendarEvent, now: datetime) -> CheckItem:
        minutes_until = int((event.start - now).total_seconds() // 60)

        if event.start <= now:
            urgency, category = Urgency.LOW, "ongoing_event"
            title = f"In progress: {event.title}"
        elif minutes_until <= IMMINENT_MINUTES:
            urgency, category = Urgency.CRITICAL, "imminent_event"
            title = f"Starting in {minutes_until} min: {event.title}"
        elif minutes_until <= SOON_MINUTES:
            urgency, category = Urgency.HIGH, "upcoming_event"
            title = f"Starting in {minutes_until} min: {event.title}"
        elif minutes_until <= LATER_TODAY_MINUTES:
            urgency, category = Urgency.MEDIUM, "upcoming_event"
            title = f"In {minutes_until // 60}h{minutes_until % 60:02d}: {event.title}"
        else:
            urgency, category = Urgency.LOW, "upcoming_event"
            title = f"{event.start.strftime('%H:%M')} UTC: {event.title}"

        description_parts = [f"{event.start.strftime('%H:%M')}-{event.end.strftime('%H:%M')} UTC"]
        if event.location:
            description_parts.append(f"at {event.location}")
        if event.attendees:
            description_parts.append(f"with {len(event.attendees)} attendee(s)")

        return CheckItem(
            title=title,
            description=" ".join(description_parts),
            urgency=urgency,
            category=category,
            metadata={
                "eventId": event.id,
                "start": event.start.isoformat(),
                "end": event.end.isoformat(),
                "minutesUntil": minutes_until,
                "location": event.location,
                "attendeeCount": len(event.attendees),
                "conferenceLink": event.conference_link,
            },
        )


def overlap_minutes(first: CalendarEvent, second: CalendarEvent) -> int:
    """Minutes de chevauchement (0 si disjoints ou simplement contigus)."""
    start = max(first.start, second.start)
    end = min(first.end, second.end)
    if end <= start:
        return 0
    return int((end - start).total_seconds() // 60) or 1


def detect_conflicts(events: List[CalendarEvent]) -> List[CheckItem]:
    """
    Détection pairwise des chevauchements.

    Returns:
        Un item scheduling_conflict (HIGH) par paire qui se chevauche
    """
    conflicts: List[CheckItem] = []

    for i, first in enumerate(events):
        for second in events[i + 1 :]:
            overlap = overlap_minutes(first, second)
            if overlap == 0:
                continue

            conflicts.append(
                CheckItem(
                    title=f"Scheduling conflict: {first.title} overlaps {second.title}",
                    description=(
                        f"{first.title} ({first.start.strftime('%H:%M')}-"
                        f"{first.end.strftime('%H:%M')}) and {second.title} "
                        f"({second.start.strftime('%H:%M')}-{second.end.strftime('%H:%M')}) "
                        f"overlap by {overlap} min."
                    ),
                    urgency=Urgency.HIGH,
                    category="scheduling_conflict",
                    metadata={
                        "eventIds": [first.id, second.id],
                        "overlapMinutes": overlap,
                        "start": max(first.start, second.start).isoformat(),
                    },
                )
            )

    return conflicts


def _summarize(events: List[CalendarEvent], conflicts: List[CheckItem]) -> str:
    if not events:
        return "No events in the next 24 hours."

    summary = f"{len(events)} event(s) in the next 24 hours"
    if conflicts:
        summary += f", {len(conflicts)} scheduling conflict(s)"
    upcoming = events[0]
    summary += f". Next: {upcoming.title} at {upcoming.start.strftime('%H:%M')} UTC."
    return summary
