"""
Heartbeat Config - configuration effective par utilisateur

La config n'est jamais un objet mutable partagé : elle est reconstruite
à chaque run par fusion fonctionnelle

    DEFAULT_HEARTBEAT_CONFIG ← préférences sauvegardées ← override explicite

L'override gagne toujours. Le dict `checks` est fusionné clé par clé.

Expressions de planification supportées (UTC) :
    - "manual"       : jamais lancé automatiquement
    - "hourly"       : toutes les heures
    - "every_4h"     : toutes les N heures
    - "every_30m"    : toutes les N minutes
    - "daily@08:00"  : une fois par jour à partir de HH:MM
"""

import re
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config.exceptions import ConfigurationError
from heartbeat.src.core.heartbeat_models import Channel

logger = structlog.get_logger(__name__)


DEFAULT_SCHEDULE = "every_4h"

_EVERY_RE = re.compile(r"^every_(\d+)([hm])$")
_DAILY_RE = re.compile(r"^daily@([01]\d|2[0-3]):([0-5]\d)$")


class HeartbeatConfig(BaseModel):
    """
    Réglages heartbeat effectifs d'un utilisateur (immutable).

    Les quiet hours sont des heures locales : `timezone` (nom IANA, UTC par
    défaut) sert à convertir l'horloge UTC avant comparaison.
    """

    model_config = ConfigDict(frozen=True)

    checks: Dict[str, bool] = Field(
        default_factory=lambda: {"email": True, "calendar": True, "tasks": True, "contacts": True},
        description="Nom checker → activé",
    )
    schedule: str = Field(default=DEFAULT_SCHEDULE, description="Expression de planification")
    notification_channel: Channel = Field(default=Channel.IN_APP)
    quiet_hours_start: Optional[int] = Field(None, ge=0, le=23)
    quiet_hours_end: Optional[int] = Field(None, ge=0, le=23)
    timezone: str = Field(default="UTC", description="Fuseau IANA des quiet hours")

    @field_validator("notification_channel", mode="before")
    @classmethod
    def _normalize_channel(cls, v: Any) -> Any:
        # Les préférences historiques stockent "in-app"
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_")
        return v

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {v}") from e
        return v

    def is_enabled(self, check_key: str) -> bool:
        return bool(self.checks.get(check_key, False))

    def in_quiet_hours(self, now: datetime) -> bool:
        """True si l'heure locale de now est dans la plage quiet hours (peut traverser minuit)."""
        if self.quiet_hours_start is None or self.quiet_hours_end is None:
            return False
        start, end = self.quiet_hours_start, self.quiet_hours_end
        if start == end:
            return False
        hour = now.astimezone(ZoneInfo(self.timezone)).hour
        if start < end:
            return start <= hour < end
        return hour >= start or hour < end


DEFAULT_HEARTBEAT_CONFIG = HeartbeatConfig()


def merge_heartbeat_config(
    saved: Optional[Mapping[str, Any]] = None,
    override: Optional[Mapping[str, Any]] = None,
    defaults: HeartbeatConfig = DEFAULT_HEARTBEAT_CONFIG,
) -> HeartbeatConfig:
    """
    Fusionne defaults ← saved ← override en une nouvelle HeartbeatConfig.

    Args:
        saved: Préférences sauvegardées (jsonb user_preferences.heartbeat)
        override: Override explicite de l'appelant (gagne toujours)
        defaults: Valeurs par défaut immuables

    Returns:
        HeartbeatConfig effective

    Raises:
        ConfigurationError: Si la fusion produit une config invalide
    """
    merged: Dict[str, Any] = defaults.model_dump()
    merged["checks"] = dict(defaults.checks)

    for layer in (saved, override):
        if not layer:
            continue
        for key, value in layer.items():
            if key == "checks" and isinstance(value, Mapping):
                merged["checks"].update(value)
            elif key in HeartbeatConfig.model_fields and value is not None:
                merged[key] = value

    try:
        return HeartbeatConfig(**merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid heartbeat configuration: {e}") from e


# ============================================================================
# Schedule
# ============================================================================


def parse_schedule(schedule: str) -> Optional[Dict[str, Any]]:
    """
    Parse une expression de planification.

    Returns:
        {"kind": "interval", "delta": timedelta} | {"kind": "daily", "hour", "minute"}
        | None pour "manual" ou expression inconnue
    """
    expr = (schedule or "").strip().lower()

    if expr == "hourly":
        return {"kind": "interval", "delta": timedelta(hours=1)}

    match = _EVERY_RE.match(expr)
    if match:
        amount = int(match.group(1))
        if amount <= 0:
            return None
        unit = timedelta(hours=1) if match.group(2) == "h" else timedelta(minutes=1)
        return {"kind": "interval", "delta": amount * unit}

    match = _DAILY_RE.match(expr)
    if match:
        return {"kind": "daily", "hour": int(match.group(1)), "minute": int(match.group(2))}

    if expr != "manual":
        logger.warning("heartbeat_schedule_unrecognized", schedule=schedule)
    return None


def is_run_due(schedule: str, last_run_at: Optional[datetime], now: datetime) -> bool:
    """
    Indique si un run planifié est dû.

    Args:
        schedule: Expression de planification
        last_run_at: Début du dernier run (None = jamais lancé)
        now: Instant courant (UTC, timezone-aware)
    """
    parsed = parse_schedule(schedule)
    if parsed is None:
        return False

    if parsed["kind"] == "interval":
        return last_run_at is None or now - last_run_at >= parsed["delta"]

    slot = now.replace(hour=parsed["hour"], minute=parsed["minute"], second=0, microsecond=0)
    if now < slot:
        return False
    return last_run_at is None or last_run_at < slot
