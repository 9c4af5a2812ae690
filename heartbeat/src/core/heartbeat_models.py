"""
Heartbeat Models

Modèles partagés par les checkers, le reasoner, le notifier et l'orchestrateur :
    - Urgency : échelle ordinale low < medium < high < critical
    - CheckItem / CheckResult : sortie normalisée d'un checker
    - HeartbeatInsight : sortie du reasoner
    - HeartbeatRun : enregistrement persistant d'une exécution
    - Channel / NotificationOutcome : livraison

Règle : une urgence inconnue n'est JAMAIS propagée, elle est ramenée
à une valeur sûre (low pour les items, medium pour les insights).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Enums
# ============================================================================


class Urgency(str, Enum):
    """Niveau d'urgence ordinal (items, résultats, insights)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_URGENCY_RANK = {
    Urgency.LOW: 0,
    Urgency.MEDIUM: 1,
    Urgency.HIGH: 2,
    Urgency.CRITICAL: 3,
}


def urgency_rank(urgency: Urgency) -> int:
    """Rang numérique (low=0 ... critical=3)."""
    return _URGENCY_RANK[urgency]


def coerce_urgency(value: Any, default: Urgency = Urgency.LOW) -> Urgency:
    """
    Ramène une valeur quelconque sur l'échelle Urgency.

    Args:
        value: Urgency, str ("HIGH", " high ") ou autre
        default: Valeur retournée si non reconnue

    Returns:
        Urgency valide
    """
    if isinstance(value, Urgency):
        return value
    if isinstance(value, str):
        try:
            return Urgency(value.strip().lower())
        except ValueError:
            return default
    return default


def max_urgency(urgencies: List[Urgency], default: Urgency = Urgency.LOW) -> Urgency:
    """Urgence la plus élevée d'une liste (default si vide)."""
    if not urgencies:
        return default
    return max(urgencies, key=urgency_rank)


class RunStatus(str, Enum):
    """États d'un run heartbeat : running → completed | failed."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Channel(str, Enum):
    """Canaux de notification déclarables comme préférés."""

    TELEGRAM = "telegram"
    SLACK = "slack"
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    IN_APP = "in_app"


# ============================================================================
# Checker output
# ============================================================================


class CheckItem(BaseModel):
    """Une constatation actionnable produite par un checker."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(..., description="Titre court (ex: 'Overdue (10d): Send invoice')")
    description: str = Field(default="", description="Détail lisible")
    urgency: Urgency = Field(default=Urgency.LOW, description="Urgence de l'item")
    category: str = Field(..., description="Tag de regroupement (ex: overdue_task)")
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="IDs source, timestamps, compteurs",
    )

    @field_validator("urgency", mode="before")
    @classmethod
    def _coerce_item_urgency(cls, v: Any) -> Urgency:
        return coerce_urgency(v, Urgency.LOW)


class CheckResult(BaseModel):
    """
    Résultat d'un checker pour un run.

    Un résultat vide (0 items, urgency low) est un résultat normal :
    intégration non connectée ou échec transitoire, la raison est dans summary.
    """

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="Type de source (email, calendar, tasks, contacts)")
    items: List[CheckItem] = Field(default_factory=list)
    summary: str = Field(default="", description="Résumé lisible")
    urgency: Urgency = Field(default=Urgency.LOW)

    @field_validator("urgency", mode="before")
    @classmethod
    def _coerce_result_urgency(cls, v: Any) -> Urgency:
        return coerce_urgency(v, Urgency.LOW)

    @classmethod
    def empty(cls, check_type: str, summary: str) -> "CheckResult":
        """Résultat vide, urgence low (non configuré, échec, timeout)."""
        return cls(type=check_type, items=[], summary=summary, urgency=Urgency.LOW)

    @property
    def has_items(self) -> bool:
        return bool(self.items)


# ============================================================================
# Reasoner output
# ============================================================================


SUMMARY_CATEGORY = "summary"


class HeartbeatInsight(BaseModel):
    """Observation synthétisée et priorisée, livrée à l'utilisateur."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    category: str = Field(..., description="Catégorie (ex: overdue_task, summary)")
    message: str = Field(..., description="Message synthétisé")
    urgency: Urgency = Field(default=Urgency.MEDIUM)
    suggested_action: str = Field(default="", alias="suggestedAction")
    related_items: List[str] = Field(default_factory=list, alias="relatedItems")

    @field_validator("urgency", mode="before")
    @classmethod
    def _coerce_insight_urgency(cls, v: Any) -> Urgency:
        return coerce_urgency(v, Urgency.MEDIUM)

    @field_validator("related_items", mode="before")
    @classmethod
    def _stringify_related(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if not isinstance(v, list):
            v = [v]
        return [str(item) for item in v]


def sort_insights(insights: List[HeartbeatInsight], limit: int = 5) -> List[HeartbeatInsight]:
    """
    Trie par urgence décroissante puis tronque.

    sorted() est stable : à urgence égale, l'ordre d'entrée est conservé.
    """
    ordered = sorted(insights, key=lambda insight: -urgency_rank(insight.urgency))
    return ordered[:limit]


# ============================================================================
# Run record
# ============================================================================


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvalidRunTransition(Exception):
    """Transition d'état interdite (run déjà terminal)."""


class HeartbeatRun(BaseModel):
    """
    Enregistrement d'une exécution heartbeat.

    Cycle de vie : créé en RUNNING, puis UNE transition vers COMPLETED
    ou FAILED via complete()/fail(). Un run terminal n'est jamais rouvert.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    results: Dict[str, CheckResult] = Field(default_factory=dict)
    insights: List[HeartbeatInsight] = Field(default_factory=list)
    status: RunStatus = RunStatus.RUNNING
    error: Optional[str] = None
    notified_via: Optional[Channel] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != RunStatus.RUNNING

    def complete(
        self, results: Dict[str, CheckResult], insights: List[HeartbeatInsight]
    ) -> "HeartbeatRun":
        """Transition RUNNING → COMPLETED (retourne une nouvelle instance)."""
        self._ensure_running(RunStatus.COMPLETED)
        return self.model_copy(
            update={
                "status": RunStatus.COMPLETED,
                "completed_at": _utcnow(),
                "results": dict(results),
                "insights": list(insights),
            }
        )

    def fail(self, error: str) -> "HeartbeatRun":
        """Transition RUNNING → FAILED (retourne une nouvelle instance)."""
        self._ensure_running(RunStatus.FAILED)
        return self.model_copy(
            update={"status": RunStatus.FAILED, "completed_at": _utcnow(), "error": error}
        )

    def with_notification(self, channel: Channel) -> "HeartbeatRun":
        """Annote le canal réellement utilisé (run COMPLETED uniquement)."""
        if self.status != RunStatus.COMPLETED:
            raise InvalidRunTransition(
                f"Run {self.id} cannot record a notification in state {self.status.value}"
            )
        return self.model_copy(update={"notified_via": channel})

    def _ensure_running(self, target: RunStatus) -> None:
        if self.status != RunStatus.RUNNING:
            raise InvalidRunTransition(
                f"Run {self.id} is {self.status.value}, cannot move to {target.value}"
            )


# ============================================================================
# Notification outcome
# ============================================================================


class NotificationOutcome(BaseModel):
    """Résultat d'une tentative de notification (audit)."""

    channel: Channel = Field(..., description="Canal ayant réellement livré")
    delivered: bool
    fallback_used: bool = False
    preferred_channel: Optional[Channel] = None
    error: Optional[str] = None
