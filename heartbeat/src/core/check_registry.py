"""
Check Registry

Registry des checkers heartbeat. L'orchestrateur itère sur le registry :
ajouter une source = enregistrer un Checker, sans toucher l'orchestrateur.

Usage:
    from heartbeat.src.core.check_registry import CheckRegistry

    registry = CheckRegistry()
    registry.register(TaskChecker(task_sources=[...]))

    enabled = registry.get_enabled(config)
"""

from typing import Dict, List, Optional

import structlog

from heartbeat.src.core.checker import Checker
from heartbeat.src.core.heartbeat_config import HeartbeatConfig

logger = structlog.get_logger(__name__)


class CheckRegistry:
    """Registry des checkers, indexé par check_type."""

    def __init__(self) -> None:
        self._checkers: Dict[str, Checker] = {}

    def register(self, checker: Checker) -> None:
        """
        Enregistre un checker.

        Raises:
            ValueError: Si check_type vide ou déjà enregistré
        """
        if not checker.check_type:
            raise ValueError(f"{type(checker).__name__} has no check_type")

        if checker.check_type in self._checkers:
            raise ValueError(f"Checker '{checker.check_type}' is already registered")

        self._checkers[checker.check_type] = checker

        logger.info(
            "Checker registered",
            check_type=checker.check_type,
            config_key=checker.key,
            total_checkers=len(self._checkers),
        )

    def get(self, check_type: str) -> Optional[Checker]:
        return self._checkers.get(check_type)

    def get_all(self) -> List[Checker]:
        return list(self._checkers.values())

    def get_enabled(self, config: HeartbeatConfig) -> List[Checker]:
        """Checkers dont le flag config.checks[key] est True (ordre d'enregistrement)."""
        return [checker for checker in self._checkers.values() if config.is_enabled(checker.key)]

    def clear(self) -> None:
        """Vide le registry (tests uniquement)."""
        self._checkers.clear()
        logger.warning("CheckRegistry cleared")

    def __len__(self) -> int:
        return len(self._checkers)
