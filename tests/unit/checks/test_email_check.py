"""
Tests unitaires pour EmailChecker
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from config.exceptions import IntegrationNotConfiguredError
from heartbeat.src.checks.email import DEFAULT_LOOKBACK, MAX_LOOKBACK, EmailChecker
from heartbeat.src.core.heartbeat_models import Urgency
from heartbeat.src.integrations.sources import MailMessage
from tests.conftest import FIXED_NOW


def _mail(mail_id: str, subject: str, hours_ago: int = 1, snippet: str = "") -> MailMessage:
    return MailMessage(
        id=mail_id,
        thread_id=f"thread-{mail_id}",
        sender="alice@example.com",
        subject=subject,
        snippet=snippet,
        received_at=FIXED_NOW - timedelta(hours=hours_ago),
    )


@pytest.fixture
def mail_source():
    source = AsyncMock()
    source.list_unread.return_value = []
    return source


@pytest.mark.asyncio
async def test_no_unread_email(mail_source, fixed_clock):
    result = await EmailChecker(mail_source, clock=fixed_clock).check("u1")

    assert result.type == "email"
    assert result.items == []
    assert result.urgency == Urgency.LOW
    assert "No new unread email" in result.summary


@pytest.mark.asyncio
async def test_urgent_keyword_in_subject_or_snippet(mail_source, fixed_clock):
    mail_source.list_unread.return_value = [
        _mail("m1", "URGENT: contract signature"),
        _mail("m2", "Lunch?"),
        _mail("m3", "Invoice", snippet="This is a final notice before suspension"),
    ]

    result = await EmailChecker(mail_source, clock=fixed_clock).check("u1")

    categories = [item.category for item in result.items]
    assert categories == ["urgent_email", "unread_email", "urgent_email"]
    assert result.items[0].urgency == Urgency.HIGH
    assert result.items[1].urgency == Urgency.LOW
    assert result.items[0].metadata["messageId"] == "m1"
    assert result.urgency == Urgency.HIGH
    assert "2 look urgent" in result.summary


@pytest.mark.asyncio
async def test_busy_inbox_is_medium(mail_source, fixed_clock):
    mail_source.list_unread.return_value = [_mail(f"m{i}", f"Newsletter {i}") for i in range(11)]

    result = await EmailChecker(mail_source, clock=fixed_clock).check("u1")

    assert len(result.items) == 11
    assert result.urgency == Urgency.MEDIUM


@pytest.mark.asyncio
async def test_window_starts_at_last_completed_run(mail_source, fixed_clock):
    last_run = FIXED_NOW - timedelta(hours=4)
    lookup = AsyncMock(return_value=last_run)

    await EmailChecker(mail_source, last_run_lookup=lookup, clock=fixed_clock).check("u1")

    lookup.assert_awaited_once_with("u1")
    assert mail_source.list_unread.await_args.kwargs["since"] == last_run


@pytest.mark.asyncio
async def test_window_defaults_and_is_bounded(mail_source, fixed_clock):
    await EmailChecker(mail_source, clock=fixed_clock).check("u1")
    assert mail_source.list_unread.await_args.kwargs["since"] == FIXED_NOW - DEFAULT_LOOKBACK

    old_lookup = AsyncMock(return_value=FIXED_NOW - timedelta(days=30))
    await EmailChecker(mail_source, last_run_lookup=old_lookup, clock=fixed_clock).check("u1")
    assert mail_source.list_unread.await_args.kwargs["since"] == FIXED_NOW - MAX_LOOKBACK


@pytest.mark.asyncio
async def test_not_connected(mail_source, fixed_clock):
    mail_source.list_unread.side_effect = IntegrationNotConfiguredError("email", "u1")

    result = await EmailChecker(mail_source, clock=fixed_clock).check("u1")

    assert result.items == []
    assert result.urgency == Urgency.LOW
    assert result.summary.startswith("Email is not connected")


@pytest.mark.asyncio
async def test_without_source_is_not_configured(fixed_clock):
    result = await EmailChecker(None, clock=fixed_clock).check("u1")
    assert "not connected" in result.summary


@pytest.mark.asyncio
async def test_transient_failure_reported_in_summary(mail_source, fixed_clock):
    mail_source.list_unread.side_effect = TimeoutError("gmail 503")

    result = await EmailChecker(mail_source, clock=fixed_clock).check("u1")

    assert result.items == []
    assert result.summary == "Error checking email: gmail 503"
