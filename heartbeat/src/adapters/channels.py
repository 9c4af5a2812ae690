"""
Adapters canaux de notification

Interface commune : send(destination_id, text) -> bool
    - True  : message accepté par la plateforme
    - False : échec (loggé), le notifier bascule sur in-app

Canaux :
    - telegram : python-telegram-bot (Bot.send_message)
    - slack    : Web API chat.postMessage (httpx)
    - whatsapp : WhatsApp Cloud API /{phone_number_id}/messages (httpx)

Pas d'adapter email : un canal préféré "email" retombe sur in-app.
"""

from typing import Dict, Optional, Protocol

import httpx
import structlog
from telegram import Bot
from telegram.error import TelegramError

from config.settings import HeartbeatSettings
from heartbeat.src.core.heartbeat_models import Channel

logger = structlog.get_logger(__name__)


TELEGRAM_MAX_LENGTH = 4096
SLACK_API_URL = "https://slack.com/api/chat.postMessage"
WHATSAPP_API_URL = "https://graph.facebook.com/v19.0/{phone_number_id}/messages"
WHATSAPP_MAX_LENGTH = 4096
HTTP_TIMEOUT_SECONDS = 10.0


class ChannelAdapter(Protocol):
    channel: Channel

    async def send(self, destination_id: str, text: str) -> bool:
        ...


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


class TelegramChannel:
    """Envoi direct au chat Telegram de l'utilisateur."""

    channel = Channel.TELEGRAM

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send(self, destination_id: str, text: str) -> bool:
        try:
            await self.bot.send_message(
                chat_id=int(destination_id),
                text=_truncate(text, TELEGRAM_MAX_LENGTH),
                disable_web_page_preview=True,
            )
        except (TelegramError, ValueError) as e:
            logger.error(
                "telegram_delivery_failed",
                chat_id=destination_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.info("telegram_delivery_sent", chat_id=destination_id, message_preview=text[:50])
        return True


class SlackChannel:
    """Message direct Slack (chat.postMessage vers l'ID utilisateur)."""

    channel = Channel.SLACK

    def __init__(self, bot_token: str, client: Optional[httpx.AsyncClient] = None):
        self.bot_token = bot_token
        self._client = client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)

    async def send(self, destination_id: str, text: str) -> bool:
        try:
            response = await self._client.post(
                SLACK_API_URL,
                headers={"Authorization": f"Bearer {self.bot_token}"},
                json={"channel": destination_id, "text": text},
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("slack_delivery_failed", user=destination_id, error=str(e))
            return False

        if not body.get("ok"):
            logger.error("slack_delivery_rejected", user=destination_id, error=body.get("error"))
            return False

        logger.info("slack_delivery_sent", user=destination_id, message_preview=text[:50])
        return True

    async def aclose(self) -> None:
        await self._client.aclose()


class WhatsAppChannel:
    """Message texte WhatsApp Cloud API."""

    channel = Channel.WHATSAPP

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self._client = client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)

    async def send(self, destination_id: str, text: str) -> bool:
        url = WHATSAPP_API_URL.format(phone_number_id=self.phone_number_id)
        payload = {
            "messaging_product": "whatsapp",
            "to": destination_id.lstrip("+"),
            "type": "text",
            "text": {"preview_url": False, "body": _truncate(text, WHATSAPP_MAX_LENGTH)},
        }
        try:
            response = await self._client.post(
                url,
                headers={"Authorization": f"Bearer {self.access_token}"},
                json=payload,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("whatsapp_delivery_failed", error=str(e))
            return False

        logger.info("whatsapp_delivery_sent", message_preview=text[:50])
        return True

    async def aclose(self) -> None:
        await self._client.aclose()


def build_channel_adapters(settings: HeartbeatSettings) -> Dict[Channel, ChannelAdapter]:
    """
    Instancie les adapters dont les credentials sont présents.

    Un canal sans credentials n'a pas d'adapter : le notifier bascule en in-app.
    """
    adapters: Dict[Channel, ChannelAdapter] = {}

    if settings.telegram_bot_token:
        adapters[Channel.TELEGRAM] = TelegramChannel(Bot(token=settings.telegram_bot_token))
    else:
        logger.warning("TELEGRAM_BOT_TOKEN not set - telegram channel disabled")

    if settings.slack_bot_token:
        adapters[Channel.SLACK] = SlackChannel(settings.slack_bot_token)

    if settings.whatsapp_access_token and settings.whatsapp_phone_number_id:
        adapters[Channel.WHATSAPP] = WhatsAppChannel(
            settings.whatsapp_access_token, settings.whatsapp_phone_number_id
        )

    logger.info("channel_adapters_built", channels=[c.value for c in adapters])
    return adapters
