"""
Heartbeat - Hiérarchie d'exceptions canonique.

Source unique pour toutes les exceptions du heartbeat.
Les erreurs "attendues" (intégration absente, LLM KO, canal KO) sont
rattrapées au plus près de leur origine ; seules les erreurs fatales
remontent jusqu'à l'orchestrateur.
"""


class HeartbeatError(Exception):
    """Base exception heartbeat."""


class IntegrationNotConfiguredError(HeartbeatError):
    """Intégration non connectée pour l'utilisateur (cas normal, pas une panne)."""

    def __init__(self, integration: str, user_id: str):
        self.integration = integration
        self.user_id = user_id
        super().__init__(f"{integration} integration is not connected")


class IntegrationError(HeartbeatError):
    """Erreur transitoire d'une source de données (API, DB de synchro)."""


class ReasoningError(HeartbeatError):
    """Réponse LLM inexploitable (JSON invalide, aucun insight utilisable)."""


class PersistenceError(HeartbeatError):
    """Échec écriture/lecture des runs heartbeat."""


class ConfigurationError(HeartbeatError):
    """Configuration utilisateur ou environnement invalide."""
