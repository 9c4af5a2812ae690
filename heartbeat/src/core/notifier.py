"""
Heartbeat Notifier

Livre les insights d'un run sur le canal préféré de l'utilisateur.

Flow:
    1. Résolution adresses (profil) + canal préféré (config effective)
    2. Quiet hours : sans insight critical, livraison in-app uniquement
    3. Formatage d'un message texte unique, indépendant du canal
    4. Envoi via l'adapter du canal
    5. Fallback in-app si adresse absente, adapter absent (email inclus)
       ou échec d'envoi
    6. Journal d'audit en tâche détachée (1 ligne par tentative)

notify() ne lève jamais : l'échec total est rapporté dans NotificationOutcome.
"""

from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional

import structlog

from heartbeat.src.adapters.channels import ChannelAdapter
from heartbeat.src.core.background import DetachedTasks
from heartbeat.src.core.checker import utcnow
from heartbeat.src.core.heartbeat_config import HeartbeatConfig
from heartbeat.src.core.heartbeat_models import (
    Channel,
    HeartbeatInsight,
    NotificationOutcome,
    Urgency,
)
from heartbeat.src.core.preference_store import PreferenceStore
from heartbeat.src.core.run_store import RunStore

logger = structlog.get_logger(__name__)


MESSAGE_HEADER = "🔔 Heartbeat update"


def format_message(insights: List[HeartbeatInsight]) -> str:
    """
    Message texte commun à tous les canaux.

    Format:
        🔔 Heartbeat update (2 insights)

        1. [CRITICAL] Message
           → Action suggérée
        2. [MEDIUM] Message
    """
    plural = "s" if len(insights) != 1 else ""
    lines = [f"{MESSAGE_HEADER} ({len(insights)} insight{plural})", ""]

    for index, insight in enumerate(insights, start=1):
        lines.append(f"{index}. [{insight.urgency.value.upper()}] {insight.message}")
        if insight.suggested_action:
            lines.append(f"   → {insight.suggested_action}")

    return "\n".join(lines)


class HeartbeatNotifier:
    """Livraison canal préféré + fallback in-app + audit."""

    def __init__(
        self,
        preference_store: PreferenceStore,
        run_store: RunStore,
        adapters: Mapping[Channel, ChannelAdapter],
        background: Optional[DetachedTasks] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize Heartbeat Notifier.

        Args:
            preference_store: Adresses de livraison
            run_store: In-app + journal de notification
            adapters: Adapters disponibles (canaux configurés uniquement)
            background: Tâches détachées pour le journal d'audit
            clock: Horloge (quiet hours)
        """
        self.preference_store = preference_store
        self.run_store = run_store
        self.adapters: Dict[Channel, ChannelAdapter] = dict(adapters)
        self.background = background or DetachedTasks()
        self.clock = clock

    async def notify(
        self,
        user_id: str,
        insights: List[HeartbeatInsight],
        run_id: str,
        config: HeartbeatConfig,
    ) -> NotificationOutcome:
        """
        Notifie l'utilisateur.

        Args:
            user_id: Destinataire
            insights: Insights triés du run
            run_id: Run d'origine (audit)
            config: Config effective (canal préféré, quiet hours)

        Returns:
            NotificationOutcome (canal ayant réellement livré)
        """
        preferred = config.notification_channel
        message = format_message(insights)
        error: Optional[str] = None

        target = preferred
        if target != Channel.IN_APP and self._deferred_by_quiet_hours(insights, config):
            logger.info("heartbeat_quiet_hours_in_app_only", user_id=user_id, run_id=run_id)
            target = Channel.IN_APP

        if target != Channel.IN_APP:
            error = await self._deliver_external(user_id, target, message)
            if error is None:
                self._audit(run_id, user_id, target, message, insights, delivered=True)
                logger.info(
                    "heartbeat_notification_sent",
                    user_id=user_id,
                    run_id=run_id,
                    channel=target.value,
                )
                return NotificationOutcome(
                    channel=target, delivered=True, preferred_channel=preferred
                )

            logger.warning(
                "heartbeat_notification_fallback",
                user_id=user_id,
                run_id=run_id,
                preferred_channel=target.value,
                reason=error,
            )

        delivered = await self._deliver_in_app(user_id, run_id, insights)
        if not delivered:
            error = error or "in-app notification write failed"
        self._audit(run_id, user_id, Channel.IN_APP, message, insights, delivered=delivered)

        return NotificationOutcome(
            channel=Channel.IN_APP,
            delivered=delivered,
            fallback_used=preferred != Channel.IN_APP,
            preferred_channel=preferred,
            error=error,
        )

    def _deferred_by_quiet_hours(
        self, insights: List[HeartbeatInsight], config: HeartbeatConfig
    ) -> bool:
        if not config.in_quiet_hours(self.clock()):
            return False
        return not any(insight.urgency == Urgency.CRITICAL for insight in insights)

    async def _deliver_external(self, user_id: str, channel: Channel, message: str) -> Optional[str]:
        """
        Envoi via adapter externe.

        Returns:
            None si livré, sinon la raison de l'échec
        """
        adapter = self.adapters.get(channel)
        if adapter is None:
            return f"no adapter for channel {channel.value}"

        try:
            addresses = await self.preference_store.get_channel_addresses(user_id)
        except Exception as e:
            logger.error("heartbeat_address_lookup_failed", user_id=user_id, error=str(e))
            return f"address lookup failed: {e}"

        destination = addresses.get(channel)
        if not destination:
            return f"no {channel.value} address for user"

        try:
            sent = await adapter.send(destination, message)
        except Exception as e:
            logger.error(
                "heartbeat_channel_send_failed",
                channel=channel.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return f"{channel.value} delivery failed: {e}"

        return None if sent else f"{channel.value} delivery failed"

    async def _deliver_in_app(
        self, user_id: str, run_id: str, insights: List[HeartbeatInsight]
    ) -> bool:
        try:
            await self.run_store.create_in_app_notifications(user_id, run_id, insights)
        except Exception as e:
            logger.error(
                "heartbeat_in_app_notification_failed",
                user_id=user_id,
                run_id=run_id,
                error=str(e),
                exc_info=True,
            )
            return False

        logger.info(
            "heartbeat_notification_in_app", user_id=user_id, run_id=run_id, count=len(insights)
        )
        return True

    def _audit(
        self,
        run_id: str,
        user_id: str,
        channel: Channel,
        message: str,
        insights: List[HeartbeatInsight],
        delivered: bool,
    ) -> None:
        self.background.spawn(
            self.run_store.log_notification(
                run_id=run_id,
                user_id=user_id,
                channel=channel,
                message=message,
                insights=insights,
                delivered=delivered,
            ),
            label="heartbeat_notification_log",
        )
