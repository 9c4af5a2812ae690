"""
Insight Reasoner

Synthétise les CheckResult d'un run en insights priorisés.

Flow:
    1. 0 item au total → insight canné "all clear" (aucun appel LLM)
    2. Sinon → Claude croise les résultats (JSON strict attendu)
    3. Validation : urgence inconnue → medium, message vide → ignoré
    4. Tri urgence décroissante (stable) + troncature à 5

Fallback heuristique déterministe (sans réseau) si :
    LLM désactivé, circuit breaker ouvert, timeout, exception,
    JSON invalide ou 0 insight exploitable.

Usage:
    reasoner = InsightReasoner(llm_client, redis_client)
    insights = await reasoner.generate_insights(list(results.values()))
"""

import asyncio
import json
import re
from typing import Any, Dict, List, Optional

import structlog
from anthropic import AsyncAnthropic
from pydantic import ValidationError
from redis.asyncio import Redis

from config.exceptions import ReasoningError
from heartbeat.src.core.heartbeat_models import (
    SUMMARY_CATEGORY,
    CheckResult,
    HeartbeatInsight,
    Urgency,
    sort_insights,
)

logger = structlog.get_logger(__name__)


ALL_CLEAR_INSIGHT = HeartbeatInsight(
    category=SUMMARY_CATEGORY,
    message="All clear! Nothing needs your attention right now.",
    urgency=Urgency.LOW,
    suggested_action="Enjoy the focus time.",
    related_items=[],
)

SYSTEM_PROMPT = """You are a proactive personal assistant reviewing the results of periodic \
checks across the user's email, calendar, tasks and contacts.

Cross-reference the findings and produce at most 5 prioritized, actionable insights. \
Merge related items (e.g. an overdue task and a meeting with the same person). \
Do not invent facts that are not in the input.

Respond ONLY with a JSON array, no text before or after. Each element:
{"category": "<short_snake_case_category>",
 "message": "<one or two sentences>",
 "urgency": "low" | "medium" | "high" | "critical",
 "suggestedAction": "<concrete next step>",
 "relatedItems": ["<source ids from item metadata>"]}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

FALLBACK_TOP_TITLES = 3


class InsightReasoner:
    """Reasoner LLM + fallback heuristique."""

    # Circuit breaker config
    CIRCUIT_BREAKER_KEY = "heartbeat:reasoner:llm_failures"
    CIRCUIT_BREAKER_THRESHOLD = 3
    CIRCUIT_BREAKER_TIMEOUT = 3600  # 1 heure

    # LLM config
    MODEL_ID = "claude-sonnet-4-5-20250929"
    TEMPERATURE = 0.3
    MAX_TOKENS = 1500
    TIMEOUT_SECONDS = 20

    def __init__(
        self,
        llm_client: Optional[AsyncAnthropic] = None,
        redis_client: Optional[Redis] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_insights: int = 5,
    ):
        """
        Initialize Insight Reasoner.

        Args:
            llm_client: Client AsyncAnthropic (None = IA désactivée, fallback seul)
            redis_client: Redis pour circuit breaker (optionnel)
            model: Modèle Claude (défaut MODEL_ID)
            timeout_seconds: Timeout appel LLM
            max_insights: Nombre max d'insights retournés
        """
        self.llm_client = llm_client
        self.redis_client = redis_client
        self.model = model or self.MODEL_ID
        self.timeout_seconds = timeout_seconds or self.TIMEOUT_SECONDS
        self.max_insights = max_insights

        logger.info(
            "InsightReasoner initialized",
            model=self.model,
            ai_enabled=llm_client is not None,
        )

    async def generate_insights(self, results: List[CheckResult]) -> List[HeartbeatInsight]:
        """
        Produit la liste d'insights du run. Ne lève jamais.

        Args:
            results: Tous les CheckResult du run

        Returns:
            ≤ max_insights insights triés par urgence décroissante
        """
        total_items = sum(len(result.items) for result in results)
        if total_items == 0:
            logger.info("reasoner_all_clear", results=len(results))
            return [ALL_CLEAR_INSIGHT]

        if self.llm_client is None:
            return self.fallback_insights(results, reason="AI disabled")

        if await self._circuit_open():
            return self.fallback_insights(results, reason="circuit breaker open")

        try:
            insights = await asyncio.wait_for(self._call_llm(results), self.timeout_seconds)

        except asyncio.TimeoutError:
            logger.error("reasoner_llm_timeout", timeout_seconds=self.timeout_seconds)
            await self._record_failure()
            return self.fallback_insights(results, reason="LLM timeout")

        except Exception as e:
            logger.error("reasoner_llm_failed", error=str(e), error_type=type(e).__name__)
            await self._record_failure()
            return self.fallback_insights(results, reason=f"LLM error: {e}")

        await self._reset_failures()
        return insights

    # ------------------------------------------------------------------
    # LLM
    # ------------------------------------------------------------------

    async def _call_llm(self, results: List[CheckResult]) -> List[HeartbeatInsight]:
        """
        Appelle Claude et valide la réponse.

        Raises:
            ReasoningError: Réponse non JSON ou aucun insight exploitable
        """
        payload = json.dumps(build_llm_payload(results), default=str)

        response = await self.llm_client.messages.create(
            model=self.model,
            system=SYSTEM_PROMPT,
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            messages=[{"role": "user", "content": payload}],
        )

        response_text = "".join(getattr(block, "text", "") for block in response.content)

        insights = parse_insights(response_text)
        if not insights:
            raise ReasoningError("LLM returned no usable insights")

        ordered = sort_insights(insights, self.max_insights)
        logger.info("reasoner_llm_insights", count=len(ordered), raw_count=len(insights))
        return ordered

    # ------------------------------------------------------------------
    # Fallback
    # ------------------------------------------------------------------

    def fallback_insights(
        self, results: List[CheckResult], reason: str = ""
    ) -> List[HeartbeatInsight]:
        """
        Heuristique déterministe, sans appel réseau.

        - Résultat avec items high/critical → 1 insight : compte + 3 premiers
          titres, urgence critical si un item critical, sinon high
        - Résultat avec seulement des items low/medium → 1 insight : summary
          et urgence du checker inchangés
        - Résultat sans item → ignoré
        """
        insights: List[HeartbeatInsight] = []

        for result in results:
            if not result.items:
                continue

            pressing = [i for i in result.items if i.urgency in (Urgency.HIGH, Urgency.CRITICAL)]
            related = _related_ids(result)

            if pressing:
                has_critical = any(i.urgency == Urgency.CRITICAL for i in pressing)
                titles = "; ".join(i.title for i in pressing[:FALLBACK_TOP_TITLES])
                more = len(pressing) - FALLBACK_TOP_TITLES
                message = f"{len(pressing)} {result.type} item(s) need attention: {titles}"
                if more > 0:
                    message += f" (+{more} more)"

                insights.append(
                    HeartbeatInsight(
                        category=pressing[0].category,
                        message=message,
                        urgency=Urgency.CRITICAL if has_critical else Urgency.HIGH,
                        suggested_action=_suggested_action(result.type),
                        related_items=related,
                    )
                )
            else:
                insights.append(
                    HeartbeatInsight(
                        category=result.type,
                        message=result.summary or f"{len(result.items)} {result.type} item(s).",
                        urgency=result.urgency,
                        suggested_action=_suggested_action(result.type),
                        related_items=related,
                    )
                )

        ordered = sort_insights(insights, self.max_insights)
        logger.warning("reasoner_fallback_used", reason=reason, insights=len(ordered))
        return ordered

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    async def _circuit_open(self) -> bool:
        if self.redis_client is None:
            return False
        try:
            failures = await self.redis_client.get(self.CIRCUIT_BREAKER_KEY)
        except Exception as e:
            logger.warning("reasoner_circuit_lookup_failed", error=str(e))
            return False
        if failures and int(failures) >= self.CIRCUIT_BREAKER_THRESHOLD:
            logger.warning("reasoner_circuit_open", failures=int(failures))
            return True
        return False

    async def _record_failure(self) -> None:
        if self.redis_client is None:
            return
        try:
            failures = await self.redis_client.incr(self.CIRCUIT_BREAKER_KEY)
            if failures >= self.CIRCUIT_BREAKER_THRESHOLD:
                await self.redis_client.expire(
                    self.CIRCUIT_BREAKER_KEY, self.CIRCUIT_BREAKER_TIMEOUT
                )
                logger.error(
                    "reasoner_circuit_opened",
                    failures=failures,
                    timeout_seconds=self.CIRCUIT_BREAKER_TIMEOUT,
                )
            else:
                await self.redis_client.expire(self.CIRCUIT_BREAKER_KEY, 300)
        except Exception as e:
            logger.warning("reasoner_circuit_update_failed", error=str(e))

    async def _reset_failures(self) -> None:
        if self.redis_client is None:
            return
        try:
            await self.redis_client.delete(self.CIRCUIT_BREAKER_KEY)
        except Exception as e:
            logger.warning("reasoner_circuit_reset_failed", error=str(e))


# ============================================================================
# Helpers
# ============================================================================


def build_llm_payload(results: List[CheckResult]) -> Dict[str, Any]:
    """
    Résumé structuré envoyé au LLM.

    Pas de descriptions complètes (taille du payload bornée) :
    type, urgence, summary, et pour chaque item titre/catégorie/urgence/metadata.
    """
    return {
        "checks": [
            {
                "type": result.type,
                "urgency": result.urgency.value,
                "summary": result.summary,
                "items": [
                    {
                        "title": item.title,
                        "category": item.category,
                        "urgency": item.urgency.value,
                        "metadata": item.metadata,
                    }
                    for item in result.items
                ],
            }
            for result in results
        ]
    }


def parse_insights(response_text: str) -> List[HeartbeatInsight]:
    """
    Parse la réponse LLM.

    Accepte un tableau JSON ou un objet {"insights": [...]}, éventuellement
    entouré de balises ```json```. Les entrées invalides sont ignorées.

    Raises:
        ReasoningError: Si la réponse n'est pas du JSON exploitable
    """
    text = _FENCE_RE.sub("", response_text.strip())

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ReasoningError(f"LLM response is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("insights")
    if not isinstance(data, list):
        raise ReasoningError("LLM response is not a list of insights")

    insights: List[HeartbeatInsight] = []
    for entry in data:
        if not isinstance(entry, dict) or not str(entry.get("message") or "").strip():
            continue
        normalized = {
            "category": str(entry.get("category") or "general"),
            "message": str(entry["message"]).strip(),
            "urgency": entry.get("urgency"),
            "suggestedAction": str(
                entry.get("suggestedAction") or entry.get("suggested_action") or ""
            ),
            "relatedItems": entry.get("relatedItems", entry.get("related_items")),
        }
        try:
            insights.append(HeartbeatInsight.model_validate(normalized))
        except ValidationError as e:
            logger.debug("reasoner_insight_skipped", error=str(e))

    return insights


def _related_ids(result: CheckResult) -> List[str]:
    """IDs source référencés par les items (metadata *Id / *Ids)."""
    ids: List[str] = []
    for item in result.items:
        for key, value in item.metadata.items():
            if key.endswith("Id") and value:
                ids.append(str(value))
            elif key.endswith("Ids") and isinstance(value, list):
                ids.extend(str(v) for v in value)
    return list(dict.fromkeys(ids))


_SUGGESTED_ACTIONS = {
    "email": "Review and reply to the flagged emails.",
    "calendar": "Review your upcoming schedule and resolve any conflicts.",
    "tasks": "Complete or reschedule the overdue tasks.",
    "contacts": "Reach out to the contacts that need a follow-up.",
}


def _suggested_action(check_type: str) -> str:
    return _SUGGESTED_ACTIONS.get(check_type, f"Review your {check_type} items.")
