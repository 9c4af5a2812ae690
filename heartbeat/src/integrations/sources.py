"""
Sources de données consommées par les checkers (lecture seule)

Interfaces (Protocol) + modèles normalisés. Les wrappers d'API tiers
(Gmail, Google Calendar, Todoist, ...) sont hors périmètre : ils alimentent
des tables de synchronisation lues par les implémentations Postgres
(voir postgres_sources.py).

Contrat commun :
    - Intégration non connectée → IntegrationNotConfiguredError
    - Échec transitoire → toute autre exception (rattrapée par le checker)
"""

from datetime import date, datetime
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field


# ============================================================================
# Records normalisés
# ============================================================================


class MailMessage(BaseModel):
    """Email non lu."""

    id: str
    thread_id: Optional[str] = None
    sender: str = ""
    subject: str = ""
    snippet: str = ""
    received_at: datetime


class CalendarEvent(BaseModel):
    """Événement calendrier dans la fenêtre demandée."""

    id: str
    title: str = "(untitled)"
    start: datetime
    end: datetime
    location: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    conference_link: Optional[str] = None


class TaskRecord(BaseModel):
    """Tâche due ou en retard (store interne ou store externe synchronisé)."""

    id: str
    title: str
    description: str = ""
    priority: str = "medium"  # low | medium | high | urgent
    due_at: datetime
    status: str = "todo"
    source: str = "internal"


class ContactRecord(BaseModel):
    """Contact relationnel."""

    id: str
    first_name: str
    last_name: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    next_followup_date: Optional[date] = None
    last_contacted_at: Optional[datetime] = None
    relationship_strength: int = Field(default=0, ge=0, le=100)
    birthday: Optional[date] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}" if self.last_name else self.first_name


# ============================================================================
# Protocols
# ============================================================================


class MailSource(Protocol):
    async def list_unread(self, user_id: str, since: datetime, limit: int) -> List[MailMessage]:
        ...


class CalendarSource(Protocol):
    async def list_events(
        self, user_id: str, start: datetime, end: datetime, limit: int
    ) -> List[CalendarEvent]:
        ...


class TaskSource(Protocol):
    name: str

    async def list_open_tasks(
        self, user_id: str, due_before: datetime, limit: int
    ) -> List[TaskRecord]:
        ...


class ContactSource(Protocol):
    async def list_overdue_followups(
        self, user_id: str, before: date, limit: int
    ) -> List[ContactRecord]:
        ...

    async def list_followups_due_on(
        self, user_id: str, day: date, limit: int
    ) -> List[ContactRecord]:
        ...

    async def list_cooling(
        self, user_id: str, min_strength: int, contacted_before: datetime, limit: int
    ) -> List[ContactRecord]:
        ...

    async def list_with_birthdays(self, user_id: str, limit: int) -> List[ContactRecord]:
        ...
