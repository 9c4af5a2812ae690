"""
Preference Store - préférences heartbeat et adresses de livraison

Lecture seule :
    - core.user_preferences.heartbeat (jsonb) : config sauvegardée
      (checks, schedule, notification_channel, quiet hours, enabled)
    - core.profiles : telegram_chat_id, slack_user_id, whatsapp_number
"""

import json
from typing import Any, Dict, List, Optional, Tuple

import asyncpg
import structlog

from heartbeat.src.core.heartbeat_models import Channel

logger = structlog.get_logger(__name__)


def _decode_jsonb(value: Any) -> Optional[Dict[str, Any]]:
    """asyncpg retourne le jsonb en str sans codec enregistré."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("heartbeat_preferences_invalid_json")
            return None
    return value if isinstance(value, dict) else None


class PreferenceStore:
    """Préférences heartbeat + profil de livraison d'un utilisateur."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def get_heartbeat_preferences(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Config heartbeat sauvegardée.

        Returns:
            Dict brut (fusionné ensuite avec les défauts) ou None si absent
        """
        async with self.db_pool.acquire() as conn:
            raw = await conn.fetchval(
                "SELECT heartbeat FROM core.user_preferences WHERE user_id = $1",
                user_id,
            )
        return _decode_jsonb(raw)

    async def get_channel_addresses(self, user_id: str) -> Dict[Channel, str]:
        """
        Adresses de livraison connues pour l'utilisateur.

        Returns:
            Dict Channel → destination_id (canaux sans adresse absents)
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT telegram_chat_id, slack_user_id, whatsapp_number
                FROM core.profiles
                WHERE user_id = $1
                """,
                user_id,
            )

        if row is None:
            return {}

        candidates = {
            Channel.TELEGRAM: row["telegram_chat_id"],
            Channel.SLACK: row["slack_user_id"],
            Channel.WHATSAPP: row["whatsapp_number"],
        }
        return {channel: str(value) for channel, value in candidates.items() if value}

    async def list_heartbeat_users(self) -> List[Tuple[str, Optional[Dict[str, Any]]]]:
        """
        Utilisateurs dont le heartbeat n'est pas désactivé ("enabled": false).

        Returns:
            Liste (user_id, préférences sauvegardées)
        """
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT user_id::text AS user_id, heartbeat
                FROM core.user_preferences
                WHERE heartbeat IS NOT NULL
                  AND COALESCE((heartbeat->>'enabled')::boolean, true)
                ORDER BY user_id
                """
            )
        return [(row["user_id"], _decode_jsonb(row["heartbeat"])) for row in rows]
