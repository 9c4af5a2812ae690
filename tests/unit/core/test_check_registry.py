"""
Tests unitaires pour CheckRegistry
"""

import pytest

from heartbeat.src.core.check_registry import CheckRegistry
from heartbeat.src.core.checker import Checker
from heartbeat.src.core.heartbeat_config import merge_heartbeat_config
from heartbeat.src.core.heartbeat_models import CheckResult


class _StubChecker(Checker):
    def __init__(self, check_type: str, config_key: str = None):
        super().__init__()
        self.check_type = check_type
        self.config_key = config_key

    async def _collect(self, user_id: str) -> CheckResult:
        return CheckResult(type=self.check_type)


@pytest.fixture
def registry():
    registry = CheckRegistry()
    for check_type in ("email", "calendar", "tasks", "contacts"):
        registry.register(_StubChecker(check_type))
    return registry


def test_register_and_get(registry):
    assert len(registry) == 4
    assert registry.get("tasks").check_type == "tasks"
    assert registry.get("weather") is None


def test_duplicate_registration_rejected(registry):
    with pytest.raises(ValueError, match="already registered"):
        registry.register(_StubChecker("email"))


def test_checker_without_type_rejected():
    with pytest.raises(ValueError):
        CheckRegistry().register(_StubChecker(""))


def test_get_enabled_follows_config_flags(registry):
    config = merge_heartbeat_config(saved={"checks": {"email": False, "contacts": False}})

    enabled = [checker.check_type for checker in registry.get_enabled(config)]

    assert enabled == ["calendar", "tasks"]


def test_config_key_overrides_check_type():
    registry = CheckRegistry()
    registry.register(_StubChecker("crm_contacts", config_key="contacts"))

    config = merge_heartbeat_config(saved={"checks": {"contacts": True}})

    assert [c.check_type for c in registry.get_enabled(config)] == ["crm_contacts"]


def test_registries_are_independent(registry):
    other = CheckRegistry()
    assert len(other) == 0

    registry.clear()
    assert len(registry) == 0
