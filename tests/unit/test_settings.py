"""Unit tests for settings loading."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from chatrelay.config import Settings, get_settings, reset_settings_cache, settings


def test_test_environment_overrides_apply() -> None:
    cfg = get_settings()

    assert cfg.environment == "test"
    assert cfg.output_update_interval_ms == 0
    assert cfg.undo_notice_seconds == 0
    assert cfg.enable_metrics is False


def test_tool_whitelist_accepts_comma_separated_env(monkeypatch) -> None:
    monkeypatch.setenv("TOOL_WHITELIST", "read, bash ,,")
    reset_settings_cache()

    assert get_settings().tool_whitelist == ["read", "bash"]


def test_empty_tool_whitelist(monkeypatch) -> None:
    monkeypatch.setenv("TOOL_WHITELIST", "")
    reset_settings_cache()

    assert get_settings().tool_whitelist == []


def test_proxy_reads_current_settings(monkeypatch) -> None:
    monkeypatch.setenv("CARD_COMPONENT_BUDGET", "42")
    reset_settings_cache()

    assert settings.card_component_budget == 42


@pytest.mark.parametrize(
    "overrides",
    [{"card_component_budget": 0}, {"ledger_max_entries": -1}, {"output_update_interval_ms": -5}],
)
def test_invalid_values_are_rejected(overrides) -> None:
    with pytest.raises(ValidationError):
        Settings(**overrides)
