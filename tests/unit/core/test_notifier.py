"""
Tests unitaires pour HeartbeatNotifier (canal préféré, fallback in-app, audit)
"""

from unittest.mock import AsyncMock

import pytest

from heartbeat.src.core.background import DetachedTasks
from heartbeat.src.core.heartbeat_config import HeartbeatConfig
from heartbeat.src.core.heartbeat_models import Channel, HeartbeatInsight, Urgency
from heartbeat.src.core.notifier import HeartbeatNotifier, format_message
from tests.conftest import FIXED_NOW


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def insights():
    return [
        HeartbeatInsight(
            category="overdue_task",
            message="Send invoice is 10 days overdue.",
            urgency=Urgency.CRITICAL,
            suggested_action="Send it today.",
            related_items=["t1"],
        ),
        HeartbeatInsight(category="email", message="3 unread emails.", urgency=Urgency.MEDIUM),
    ]


@pytest.fixture
def preference_store():
    store = AsyncMock()
    store.get_channel_addresses.return_value = {
        Channel.TELEGRAM: "123456",
        Channel.SLACK: "U123",
    }
    return store


@pytest.fixture
def run_store():
    return AsyncMock()


@pytest.fixture
def telegram_adapter():
    adapter = AsyncMock()
    adapter.send.return_value = True
    return adapter


@pytest.fixture
async def background():
    background = DetachedTasks()
    yield background
    await background.drain()


@pytest.fixture
def notifier(preference_store, run_store, telegram_adapter, background, fixed_clock):
    return HeartbeatNotifier(
        preference_store=preference_store,
        run_store=run_store,
        adapters={Channel.TELEGRAM: telegram_adapter},
        background=background,
        clock=fixed_clock,
    )


def _config(channel: str, **kwargs) -> HeartbeatConfig:
    return HeartbeatConfig(notification_channel=channel, **kwargs)


# ============================================================================
# Formatage
# ============================================================================


def test_format_message_is_numbered_with_urgency_tags(insights):
    message = format_message(insights)

    lines = message.splitlines()
    assert lines[0] == "🔔 Heartbeat update (2 insights)"
    assert "1. [CRITICAL] Send invoice is 10 days overdue." in lines
    assert "   → Send it today." in lines
    assert "2. [MEDIUM] 3 unread emails." in lines


# ============================================================================
# Livraison
# ============================================================================


@pytest.mark.asyncio
async def test_preferred_channel_delivery(notifier, insights, telegram_adapter, run_store, background):
    outcome = await notifier.notify("u1", insights, "run-1", _config("telegram"))
    await background.drain()

    assert outcome.channel == Channel.TELEGRAM
    assert outcome.delivered
    assert not outcome.fallback_used
    telegram_adapter.send.assert_awaited_once()
    assert telegram_adapter.send.await_args.args[0] == "123456"
    run_store.create_in_app_notifications.assert_not_awaited()

    log_kwargs = run_store.log_notification.await_args.kwargs
    assert log_kwargs["run_id"] == "run-1"
    assert log_kwargs["channel"] == Channel.TELEGRAM
    assert log_kwargs["delivered"] is True
    assert log_kwargs["insights"] == insights


@pytest.mark.asyncio
async def test_missing_address_falls_back_to_in_app(
    notifier, insights, preference_store, run_store, telegram_adapter, background
):
    preference_store.get_channel_addresses.return_value = {}

    outcome = await notifier.notify("u1", insights, "run-1", _config("telegram"))
    await background.drain()

    assert outcome.channel == Channel.IN_APP
    assert outcome.delivered
    assert outcome.fallback_used
    assert outcome.preferred_channel == Channel.TELEGRAM
    telegram_adapter.send.assert_not_awaited()
    run_store.create_in_app_notifications.assert_awaited_once_with("u1", "run-1", insights)
    assert run_store.log_notification.await_args.kwargs["channel"] == Channel.IN_APP


@pytest.mark.asyncio
async def test_adapter_failure_falls_back_to_in_app(notifier, insights, telegram_adapter, run_store):
    telegram_adapter.send.return_value = False

    outcome = await notifier.notify("u1", insights, "run-1", _config("telegram"))

    assert outcome.channel == Channel.IN_APP
    assert outcome.fallback_used
    assert "telegram delivery failed" in outcome.error
    run_store.create_in_app_notifications.assert_awaited_once()


@pytest.mark.asyncio
async def test_adapter_exception_falls_back_to_in_app(notifier, insights, telegram_adapter, run_store):
    telegram_adapter.send.side_effect = RuntimeError("chat not found")

    outcome = await notifier.notify("u1", insights, "run-1", _config("telegram"))

    assert outcome.channel == Channel.IN_APP
    assert outcome.delivered
    run_store.create_in_app_notifications.assert_awaited_once()


@pytest.mark.asyncio
async def test_channel_without_adapter_falls_back(notifier, insights, run_store):
    """Slack préféré mais aucun adapter configuré."""
    outcome = await notifier.notify("u1", insights, "run-1", _config("slack"))

    assert outcome.channel == Channel.IN_APP
    assert outcome.fallback_used
    run_store.create_in_app_notifications.assert_awaited_once()


@pytest.mark.asyncio
async def test_email_preference_falls_through_to_in_app(notifier, insights, run_store):
    outcome = await notifier.notify("u1", insights, "run-1", _config("email"))

    assert outcome.channel == Channel.IN_APP
    assert outcome.preferred_channel == Channel.EMAIL
    run_store.create_in_app_notifications.assert_awaited_once()


@pytest.mark.asyncio
async def test_in_app_preference(notifier, insights, preference_store, run_store):
    outcome = await notifier.notify("u1", insights, "run-1", _config("in_app"))

    assert outcome.channel == Channel.IN_APP
    assert not outcome.fallback_used
    preference_store.get_channel_addresses.assert_not_awaited()
    run_store.create_in_app_notifications.assert_awaited_once()


@pytest.mark.asyncio
async def test_in_app_write_failure_is_reported(notifier, insights, run_store, background):
    run_store.create_in_app_notifications.side_effect = RuntimeError("db down")

    outcome = await notifier.notify("u1", insights, "run-1", _config("in_app"))
    await background.drain()

    assert not outcome.delivered
    assert outcome.error == "in-app notification write failed"
    assert run_store.log_notification.await_args.kwargs["delivered"] is False


@pytest.mark.asyncio
async def test_audit_log_failure_does_not_affect_delivery(
    notifier, insights, run_store, background
):
    run_store.log_notification.side_effect = RuntimeError("log table locked")

    outcome = await notifier.notify("u1", insights, "run-1", _config("telegram"))
    await background.drain()

    assert outcome.delivered
    assert outcome.channel == Channel.TELEGRAM


# ============================================================================
# Quiet hours
# ============================================================================


@pytest.mark.asyncio
async def test_quiet_hours_keep_non_critical_in_app(notifier, telegram_adapter, run_store):
    medium_only = [HeartbeatInsight(category="email", message="3 unread", urgency="medium")]
    hour = FIXED_NOW.hour
    config = _config("telegram", quiet_hours_start=hour, quiet_hours_end=(hour + 2) % 24)

    outcome = await notifier.notify("u1", medium_only, "run-1", config)

    assert outcome.channel == Channel.IN_APP
    telegram_adapter.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_quiet_hours_let_critical_through(notifier, insights, telegram_adapter):
    hour = FIXED_NOW.hour
    config = _config("telegram", quiet_hours_start=hour, quiet_hours_end=(hour + 2) % 24)

    outcome = await notifier.notify("u1", insights, "run-1", config)

    assert outcome.channel == Channel.TELEGRAM
    telegram_adapter.send.assert_awaited_once()
