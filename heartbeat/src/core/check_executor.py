"""
Check Executor

Exécute les checkers d'un run en parallèle avec isolation.

Features:
    - Fan-out : asyncio.gather, un task par checker, résultats indexés par check_type
    - Timeout : chaque checker borné (timeout ≡ échec → résultat vide/low)
    - Limite de concurrence : asyncio.Semaphore
    - Circuit breaker (Redis, optionnel) : 3 timeouts/crashs consécutifs
      → checker désactivé 1h pour cet utilisateur

Usage:
    executor = CheckExecutor(redis_client, timeout_seconds=8)
    results = await executor.execute_all(checkers, user_id)
"""

import asyncio
from typing import Dict, List, Optional

import structlog
from redis.asyncio import Redis

from heartbeat.src.core.checker import Checker
from heartbeat.src.core.heartbeat_models import CheckResult

logger = structlog.get_logger(__name__)


class CheckExecutor:
    """Exécuteur de checkers avec timeout, limite de concurrence et circuit breaker."""

    # Circuit breaker config
    CIRCUIT_BREAKER_THRESHOLD = 3  # 3 échecs consécutifs
    CIRCUIT_BREAKER_TIMEOUT = 3600  # 1 heure
    FAILURE_WINDOW = 3600  # compteur remis à zéro après 1h sans échec

    DEFAULT_TIMEOUT_SECONDS = 8.0
    DEFAULT_MAX_CONCURRENCY = 8

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        """
        Initialize Check Executor.

        Args:
            redis_client: Redis pour circuit breaker (None = désactivé)
            timeout_seconds: Durée max d'un checker
            max_concurrency: Nombre max de checkers simultanés
        """
        self.redis_client = redis_client
        self.timeout_seconds = timeout_seconds
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))

        logger.info(
            "CheckExecutor initialized",
            timeout_seconds=timeout_seconds,
            max_concurrency=max_concurrency,
            circuit_breaker=redis_client is not None,
        )

    async def execute_all(self, checkers: List[Checker], user_id: str) -> Dict[str, CheckResult]:
        """
        Lance tous les checkers en parallèle et attend leur fin.

        execute() ne lève jamais : le join n'a pas de branche d'erreur par task.

        Returns:
            Dict check_type → CheckResult (indépendant de l'ordre de complétion)
        """
        if not checkers:
            return {}

        results = await asyncio.gather(*(self.execute(checker, user_id) for checker in checkers))
        return {checker.check_type: result for checker, result in zip(checkers, results)}

    async def execute(self, checker: Checker, user_id: str) -> CheckResult:
        """
        Exécute un checker avec timeout + circuit breaker.

        Returns:
            CheckResult (résultat vide/low si timeout, crash ou circuit ouvert)
        """
        check_type = checker.check_type

        if await self._is_disabled(check_type, user_id):
            logger.warning("Checker disabled by circuit breaker", check_type=check_type)
            return CheckResult.empty(
                check_type, f"{check_type} check temporarily disabled after repeated failures"
            )

        async with self._semaphore:
            try:
                result = await asyncio.wait_for(checker.check(user_id), self.timeout_seconds)

            except asyncio.TimeoutError:
                logger.error(
                    "Checker timed out",
                    check_type=check_type,
                    user_id=user_id,
                    timeout_seconds=self.timeout_seconds,
                )
                await self._record_failure(check_type, user_id)
                return CheckResult.empty(
                    check_type,
                    f"{check_type} check timed out after {self.timeout_seconds:g}s",
                )

            except Exception as e:
                # Checker hors contrat (check() ne devrait jamais lever)
                logger.error(
                    "Checker raised",
                    check_type=check_type,
                    user_id=user_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self._record_failure(check_type, user_id)
                return CheckResult.empty(check_type, f"Error checking {check_type}: {e}")

        await self._reset_failures(check_type, user_id)

        logger.debug(
            "Checker executed",
            check_type=check_type,
            items=len(result.items),
            urgency=result.urgency.value,
        )
        return result

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    @staticmethod
    def _keys(check_type: str, user_id: str) -> tuple:
        return (
            f"heartbeat:check:failures:{check_type}:{user_id}",
            f"heartbeat:check:disabled:{check_type}:{user_id}",
        )

    async def _is_disabled(self, check_type: str, user_id: str) -> bool:
        if self.redis_client is None:
            return False
        _, disabled_key = self._keys(check_type, user_id)
        try:
            return bool(await self.redis_client.get(disabled_key))
        except Exception as e:
            logger.warning("Circuit breaker lookup failed", check_type=check_type, error=str(e))
            return False

    async def _reset_failures(self, check_type: str, user_id: str) -> None:
        if self.redis_client is None:
            return
        failures_key, _ = self._keys(check_type, user_id)
        try:
            await self.redis_client.delete(failures_key)
        except Exception as e:
            logger.warning("Circuit breaker reset failed", check_type=check_type, error=str(e))

    async def _record_failure(self, check_type: str, user_id: str) -> None:
        """Incrémente compteur échecs + ouvre circuit breaker si seuil atteint."""
        if self.redis_client is None:
            return
        failures_key, disabled_key = self._keys(check_type, user_id)
        try:
            failures = await self.redis_client.incr(failures_key)
            await self.redis_client.expire(failures_key, self.FAILURE_WINDOW)

            if failures >= self.CIRCUIT_BREAKER_THRESHOLD:
                await self.redis_client.setex(disabled_key, self.CIRCUIT_BREAKER_TIMEOUT, "1")
                await self.redis_client.delete(failures_key)
                logger.error(
                    "Checker circuit breaker opened",
                    check_type=check_type,
                    user_id=user_id,
                    failures=failures,
                    timeout_seconds=self.CIRCUIT_BREAKER_TIMEOUT,
                )
        except Exception as e:
            logger.warning("Circuit breaker update failed", check_type=check_type, error=str(e))
