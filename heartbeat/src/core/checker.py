"""
Checker - contrat commun des checkers heartbeat

Un checker inspecte UNE source pour UN utilisateur et retourne un
CheckResult normalisé. check() est total : il ne lève jamais.

    - Intégration non connectée → 0 item, urgence low, summary explicatif
    - Échec transitoire         → log + même forme, summary avec la raison

Les sous-classes implémentent seulement _collect() (fetch + normalisation
+ classification d'urgence).
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from config.exceptions import IntegrationNotConfiguredError
from heartbeat.src.core.heartbeat_models import CheckResult

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Checker(ABC):
    """Checker heartbeat (une instance par source, sans état entre runs)."""

    #: Type de source porté par CheckResult.type (clé du dict results)
    check_type: str = ""

    #: Clé dans HeartbeatConfig.checks (défaut: check_type)
    config_key: Optional[str] = None

    #: Description courte (logs, debug)
    description: str = ""

    #: Libellé utilisateur de l'intégration (message "non connecté")
    integration_label: str = ""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    @property
    def key(self) -> str:
        return self.config_key or self.check_type

    async def check(self, user_id: str) -> CheckResult:
        """
        Exécute le checker pour user_id.

        Returns:
            CheckResult (jamais d'exception)
        """
        try:
            return await self._collect(user_id)

        except IntegrationNotConfiguredError as e:
            logger.info(
                "checker_integration_not_configured",
                check_type=self.check_type,
                integration=e.integration,
                user_id=user_id,
            )
            label = self.integration_label or self.check_type
            return CheckResult.empty(
                self.check_type,
                f"{label} is not connected. Connect it to include {self.check_type} "
                "in your heartbeat.",
            )

        except Exception as e:
            logger.error(
                "checker_failed",
                check_type=self.check_type,
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return CheckResult.empty(self.check_type, f"Error checking {self.check_type}: {e}")

    @abstractmethod
    async def _collect(self, user_id: str) -> CheckResult:
        """Fetch + normalisation. Peut lever, check() rattrape."""
