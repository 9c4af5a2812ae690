"""
Tests unitaires pour les modèles heartbeat (urgence, insights, cycle de vie du run)
"""

import pytest

from heartbeat.src.core.heartbeat_models import (
    Channel,
    CheckItem,
    CheckResult,
    HeartbeatInsight,
    HeartbeatRun,
    InvalidRunTransition,
    RunStatus,
    Urgency,
    coerce_urgency,
    max_urgency,
    sort_insights,
    urgency_rank,
)


# ============================================================================
# Urgency
# ============================================================================


def test_urgency_scale_is_ordered():
    ranks = [urgency_rank(u) for u in (Urgency.LOW, Urgency.MEDIUM, Urgency.HIGH, Urgency.CRITICAL)]
    assert ranks == sorted(ranks)
    assert len(set(ranks)) == 4


@pytest.mark.parametrize(
    "value,expected",
    [
        ("HIGH", Urgency.HIGH),
        (" critical ", Urgency.CRITICAL),
        (Urgency.MEDIUM, Urgency.MEDIUM),
        ("severe", Urgency.LOW),
        (None, Urgency.LOW),
        (3, Urgency.LOW),
    ],
)
def test_coerce_urgency(value, expected):
    assert coerce_urgency(value) == expected


def test_max_urgency_defaults_to_low_when_empty():
    assert max_urgency([]) == Urgency.LOW
    assert max_urgency([Urgency.MEDIUM, Urgency.CRITICAL, Urgency.HIGH]) == Urgency.CRITICAL


# ============================================================================
# CheckItem / CheckResult
# ============================================================================


def test_check_item_unknown_urgency_becomes_low():
    item = CheckItem(title="x", category="misc", urgency="whatever")
    assert item.urgency == Urgency.LOW


def test_check_result_is_immutable():
    result = CheckResult(type="tasks", summary="ok")
    with pytest.raises(Exception):
        result.summary = "changed"


def test_check_result_empty():
    result = CheckResult.empty("email", "Email is not connected.")
    assert result.items == []
    assert result.urgency == Urgency.LOW
    assert not result.has_items


# ============================================================================
# HeartbeatInsight
# ============================================================================


def test_insight_unknown_urgency_becomes_medium():
    insight = HeartbeatInsight(category="x", message="m", urgency="bogus")
    assert insight.urgency == Urgency.MEDIUM


def test_insight_accepts_camel_case_aliases():
    insight = HeartbeatInsight.model_validate(
        {
            "category": "overdue_task",
            "message": "Send invoice",
            "urgency": "high",
            "suggestedAction": "Do it now",
            "relatedItems": ["t1", 42],
        }
    )
    assert insight.suggested_action == "Do it now"
    assert insight.related_items == ["t1", "42"]


def test_sort_insights_is_stable_and_truncated():
    insights = [
        HeartbeatInsight(category=f"c{i}", message=f"m{i}", urgency=u)
        for i, u in enumerate(["low", "high", "medium", "high", "critical", "low", "medium"])
    ]

    ordered = sort_insights(insights, limit=5)

    assert len(ordered) == 5
    assert [i.urgency for i in ordered] == [
        Urgency.CRITICAL,
        Urgency.HIGH,
        Urgency.HIGH,
        Urgency.MEDIUM,
        Urgency.MEDIUM,
    ]
    # Égalité d'urgence : ordre d'entrée conservé
    assert [i.category for i in ordered[1:3]] == ["c1", "c3"]
    assert [i.category for i in ordered[3:5]] == ["c2", "c6"]


# ============================================================================
# HeartbeatRun
# ============================================================================


def test_run_starts_running_with_unique_id():
    first = HeartbeatRun(user_id="u1")
    second = HeartbeatRun(user_id="u1")

    assert first.status == RunStatus.RUNNING
    assert first.completed_at is None
    assert first.id != second.id


def test_run_complete_transition():
    run = HeartbeatRun(user_id="u1")
    results = {"tasks": CheckResult(type="tasks")}
    insights = [HeartbeatInsight(category="summary", message="All clear", urgency="low")]

    completed = run.complete(results, insights)

    assert completed.status == RunStatus.COMPLETED
    assert completed.completed_at is not None
    assert completed.results == results
    assert completed.insights == insights
    # L'instance d'origine n'est pas modifiée
    assert run.status == RunStatus.RUNNING


def test_terminal_run_cannot_transition_again():
    completed = HeartbeatRun(user_id="u1").complete({}, [])

    with pytest.raises(InvalidRunTransition):
        completed.fail("boom")
    with pytest.raises(InvalidRunTransition):
        completed.complete({}, [])

    failed = HeartbeatRun(user_id="u1").fail("boom")
    assert failed.status == RunStatus.FAILED
    assert failed.error == "boom"
    with pytest.raises(InvalidRunTransition):
        failed.complete({}, [])


def test_with_notification_only_on_completed_run():
    completed = HeartbeatRun(user_id="u1").complete({}, [])
    annotated = completed.with_notification(Channel.TELEGRAM)

    assert annotated.notified_via == Channel.TELEGRAM
    assert annotated.status == RunStatus.COMPLETED

    with pytest.raises(InvalidRunTransition):
        HeartbeatRun(user_id="u1").with_notification(Channel.IN_APP)
