"""Heartbeat - Adapters Package

Adapters canaux de notification (un fichier par famille de providers).

Available adapters:
    - channels.TelegramChannel: python-telegram-bot
    - channels.SlackChannel: Slack Web API (httpx)
    - channels.WhatsAppChannel: WhatsApp Cloud API (httpx)
    - channels.build_channel_adapters: factory depuis HeartbeatSettings
"""

from heartbeat.src.adapters.channels import (
    ChannelAdapter,
    SlackChannel,
    TelegramChannel,
    WhatsAppChannel,
    build_channel_adapters,
)

__all__ = [
    "ChannelAdapter",
    "SlackChannel",
    "TelegramChannel",
    "WhatsAppChannel",
    "build_channel_adapters",
]
