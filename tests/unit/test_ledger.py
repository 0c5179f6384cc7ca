"""Unit tests for the interaction ledger."""

from __future__ import annotations

import pytest

from chatrelay.errors import InvalidInteractionError
from chatrelay.interactions.ledger import Interaction, InteractionKind, InteractionLedger


def test_add_pop_and_peek_are_lifo() -> None:
    ledger = InteractionLedger()
    first = ledger.add_interaction("c1", Interaction(["a1"], user_artifact_id="u1"))
    second = ledger.add_interaction("c1", Interaction(["a2"], kind=InteractionKind.QUESTION_PROMPT))

    assert ledger.size("c1") == 2
    assert ledger.peek_last("c1") is second
    assert ledger.pop_interaction("c1") is second
    assert ledger.pop_interaction("c1") is first
    assert ledger.pop_interaction("c1") is None
    assert ledger.entries("c1") == []


def test_late_recorded_exchange_keeps_its_place() -> None:
    ledger = InteractionLedger()
    ledger.add_interaction("c1", Interaction(["a1"], timestamp=10.0))
    ledger.add_interaction("c1", Interaction(["a3"], timestamp=30.0))

    ledger.add_interaction("c1", Interaction(["a2"], timestamp=20.0))
    ledger.add_interaction("c1", Interaction(["a4"], timestamp=30.0))

    assert [e.bot_artifact_ids for e in ledger.entries("c1")] == [["a1"], ["a2"], ["a3"], ["a4"]]


def test_entries_need_bot_artifacts() -> None:
    ledger = InteractionLedger()

    with pytest.raises(InvalidInteractionError):
        ledger.add_interaction("c1", Interaction([]))


def test_oldest_entries_are_trimmed() -> None:
    ledger = InteractionLedger(max_entries=2)
    for index in range(3):
        ledger.add_interaction("c1", Interaction([f"a{index}"]))

    assert [e.bot_artifact_ids for e in ledger.entries("c1")] == [["a1"], ["a2"]]


def test_update_touches_most_recent_match() -> None:
    ledger = InteractionLedger()
    ledger.add_interaction("c1", Interaction(["a1"]))
    newest = ledger.add_interaction("c1", Interaction(["a1", "a2"]))

    updated = ledger.update_interaction(
        "c1",
        lambda e: e.owns_any({"a1"}),
        lambda e: setattr(e, "bot_artifact_ids", ["a1", "a2", "a3"]),
    )

    assert updated is newest
    assert newest.bot_artifact_ids == ["a1", "a2", "a3"]
    assert ledger.entries("c1")[0].bot_artifact_ids == ["a1"]


def test_update_without_match_returns_none() -> None:
    ledger = InteractionLedger()
    ledger.add_interaction("c1", Interaction(["a1"]))

    assert ledger.update_interaction("c1", lambda e: False, lambda e: None) is None


def test_conversations_are_isolated() -> None:
    ledger = InteractionLedger()
    ledger.add_interaction("c1", Interaction(["a1"]))
    ledger.add_interaction("c2", Interaction(["b1"]))

    ledger.drop("c1")

    assert ledger.size("c1") == 0
    assert ledger.size("c2") == 1
