"""
Tests unitaires pour InsightReasoner (LLM + fallback heuristique)
"""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import pytest

from config.exceptions import ReasoningError
from heartbeat.src.core.heartbeat_models import CheckItem, CheckResult, Urgency
from heartbeat.src.core.reasoner import (
    ALL_CLEAR_INSIGHT,
    InsightReasoner,
    build_llm_payload,
    parse_insights,
)


# ============================================================================
# Fixtures
# ============================================================================


def _llm_response(text: str):
    return Mock(content=[Mock(text=text)])


@pytest.fixture
def mock_llm_client():
    client = AsyncMock()
    client.messages.create.return_value = _llm_response("[]")
    return client


@pytest.fixture
def empty_results():
    return [CheckResult.empty(t, f"{t} is not connected.") for t in ("email", "calendar")]


@pytest.fixture
def task_results():
    overdue = CheckItem(
        title="Overdue (10d): Send invoice",
        description="Invoice for ACME",
        urgency=Urgency.CRITICAL,
        category="overdue_task",
        metadata={"taskId": "t1"},
    )
    return [
        CheckResult(
            type="tasks", items=[overdue], summary="1 overdue task(s).", urgency=Urgency.CRITICAL
        ),
        CheckResult.empty("email", "No new unread email since last check."),
    ]


# ============================================================================
# All clear
# ============================================================================


@pytest.mark.asyncio
async def test_zero_items_returns_all_clear_without_llm_call(mock_llm_client, empty_results):
    reasoner = InsightReasoner(llm_client=mock_llm_client)

    insights = await reasoner.generate_insights(empty_results)

    assert insights == [ALL_CLEAR_INSIGHT]
    assert insights[0].category == "summary"
    assert insights[0].urgency == Urgency.LOW
    mock_llm_client.messages.create.assert_not_awaited()


# ============================================================================
# LLM path
# ============================================================================


@pytest.mark.asyncio
async def test_llm_insights_are_validated_sorted_and_truncated(mock_llm_client, task_results):
    payload = [
        {"category": f"c{i}", "message": f"m{i}", "urgency": u}
        for i, u in enumerate(["low", "medium", "critical", "bogus", "high", "low", "high"])
    ]
    mock_llm_client.messages.create.return_value = _llm_response(json.dumps(payload))

    insights = await InsightReasoner(llm_client=mock_llm_client).generate_insights(task_results)

    assert len(insights) == 5
    assert [i.category for i in insights] == ["c2", "c4", "c6", "c1", "c3"]
    # Urgence inconnue ramenée à medium
    assert insights[4].urgency == Urgency.MEDIUM


@pytest.mark.asyncio
async def test_llm_call_parameters(mock_llm_client, task_results):
    mock_llm_client.messages.create.return_value = _llm_response(
        '```json\n{"insights": [{"category": "overdue_task", "message": "Send the invoice",'
        ' "urgency": "critical", "suggestedAction": "Send it", "relatedItems": ["t1"]}]}\n```'
    )

    insights = await InsightReasoner(
        llm_client=mock_llm_client, model="claude-test"
    ).generate_insights(task_results)

    assert insights[0].suggested_action == "Send it"
    assert insights[0].related_items == ["t1"]

    kwargs = mock_llm_client.messages.create.await_args.kwargs
    assert kwargs["model"] == "claude-test"
    assert kwargs["temperature"] == InsightReasoner.TEMPERATURE
    sent = json.loads(kwargs["messages"][0]["content"])
    assert sent["checks"][0]["items"][0]["title"] == "Overdue (10d): Send invoice"


@pytest.mark.asyncio
async def test_malformed_llm_output_triggers_fallback(mock_llm_client, task_results):
    mock_llm_client.messages.create.return_value = _llm_response("Sure! Here are your insights:")

    insights = await InsightReasoner(llm_client=mock_llm_client).generate_insights(task_results)

    assert len(insights) == 1
    assert insights[0].urgency == Urgency.CRITICAL
    assert "Send invoice" in insights[0].message


@pytest.mark.asyncio
async def test_llm_with_no_usable_insight_triggers_fallback(mock_llm_client, task_results):
    mock_llm_client.messages.create.return_value = _llm_response('[{"category": "x"}]')

    insights = await InsightReasoner(llm_client=mock_llm_client).generate_insights(task_results)

    assert insights[0].category == "overdue_task"
    assert insights[0].urgency == Urgency.CRITICAL


@pytest.mark.asyncio
async def test_llm_exception_records_failure_and_falls_back(
    mock_llm_client, mock_redis_client, task_results
):
    mock_llm_client.messages.create.side_effect = RuntimeError("529 overloaded")

    reasoner = InsightReasoner(llm_client=mock_llm_client, redis_client=mock_redis_client)
    insights = await reasoner.generate_insights(task_results)

    assert insights[0].urgency == Urgency.CRITICAL
    mock_redis_client.incr.assert_awaited_once_with(InsightReasoner.CIRCUIT_BREAKER_KEY)


@pytest.mark.asyncio
async def test_llm_timeout_falls_back(mock_llm_client, task_results):
    async def slow(**kwargs):
        await asyncio.sleep(10)

    mock_llm_client.messages.create.side_effect = slow

    reasoner = InsightReasoner(llm_client=mock_llm_client, timeout_seconds=0.05)
    insights = await reasoner.generate_insights(task_results)

    assert insights[0].category == "overdue_task"


@pytest.mark.asyncio
async def test_circuit_open_skips_llm(mock_llm_client, mock_redis_client, task_results):
    mock_redis_client.get.return_value = str(InsightReasoner.CIRCUIT_BREAKER_THRESHOLD)

    reasoner = InsightReasoner(llm_client=mock_llm_client, redis_client=mock_redis_client)
    insights = await reasoner.generate_insights(task_results)

    assert insights[0].urgency == Urgency.CRITICAL
    mock_llm_client.messages.create.assert_not_awaited()


# ============================================================================
# Fallback heuristique
# ============================================================================


def test_fallback_lists_top_three_pressing_titles():
    items = [
        CheckItem(title=f"Task {i}", category="overdue_task", urgency=Urgency.HIGH)
        for i in range(5)
    ]
    results = [CheckResult(type="tasks", items=items, summary="5 overdue", urgency=Urgency.HIGH)]

    insights = InsightReasoner().fallback_insights(results)

    assert len(insights) == 1
    assert insights[0].urgency == Urgency.HIGH
    assert insights[0].message == (
        "5 tasks item(s) need attention: Task 0; Task 1; Task 2 (+2 more)"
    )


def test_fallback_keeps_checker_summary_for_low_items():
    low = CheckItem(title="Newsletter", category="unread_email", urgency=Urgency.LOW)
    results = [
        CheckResult(type="email", items=[low], summary="1 unread email(s).", urgency=Urgency.LOW),
        CheckResult.empty("calendar", "No events in the next 24 hours."),
    ]

    insights = InsightReasoner().fallback_insights(results)

    assert len(insights) == 1
    assert insights[0].category == "email"
    assert insights[0].message == "1 unread email(s)."
    assert insights[0].urgency == Urgency.LOW


@pytest.mark.asyncio
async def test_ai_disabled_uses_fallback(task_results):
    insights = await InsightReasoner(llm_client=None).generate_insights(task_results)

    assert len(insights) == 1
    assert insights[0].related_items == ["t1"]


# ============================================================================
# Helpers
# ============================================================================


def test_payload_omits_descriptions(task_results):
    payload = build_llm_payload(task_results)

    item = payload["checks"][0]["items"][0]
    assert "description" not in item
    assert item["urgency"] == "critical"


def test_parse_insights_rejects_non_json():
    with pytest.raises(ReasoningError):
        parse_insights("not json")
    with pytest.raises(ReasoningError):
        parse_insights('{"foo": 1}')


def test_parse_insights_skips_entries_without_message():
    insights = parse_insights('[{"message": "  "}, "text", {"message": "Call Bob", "urgency": "LOW"}]')

    assert len(insights) == 1
    assert insights[0].message == "Call Bob"
    assert insights[0].urgency == Urgency.LOW
    assert insights[0].category == "general"
