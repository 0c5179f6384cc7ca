"""Unit tests for the pending-question coordinator."""

from __future__ import annotations

import pytest

from chatrelay.coordinators.questions import QuestionCoordinator, QuestionOutcome
from chatrelay.events import QuestionAskedEvent, QuestionInfo, QuestionOption


def _event(request_id: str = "q1", session_id: str = "s1", options: int = 2) -> QuestionAskedEvent:
    labels = ["Yes", "No", "Maybe"][:options] if options <= 3 else [f"opt{i}" for i in range(options)]
    return QuestionAskedEvent(
        id=request_id,
        session_id=session_id,
        questions=[
            QuestionInfo(question="Proceed?", options=[QuestionOption(label=label) for label in labels]),
            QuestionInfo(question="Anything else?"),
        ],
    )


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.anyio
async def test_answers_advance_then_submit(fake_runtime) -> None:
    coordinator = QuestionCoordinator(fake_runtime)
    coordinator.register(_event(), "c1", "chat")

    first = await coordinator.answer("q1", "A")
    second = await coordinator.answer("q1", "custom text")

    assert first.outcome is QuestionOutcome.ADVANCED
    assert first.pending is not None and first.pending.current_index == 1
    assert second.outcome is QuestionOutcome.SUBMITTED
    assert second.answers == [["Yes"], ["custom text"]]
    assert fake_runtime.calls_named("reply_question") == [("q1", [["Yes"], ["custom text"]])]
    assert coordinator.get("q1") is None
    assert len(coordinator) == 0


@pytest.mark.anyio
async def test_skip_leaves_an_empty_answer(fake_runtime) -> None:
    coordinator = QuestionCoordinator(fake_runtime)
    coordinator.register(_event(), "c1", "chat")

    await coordinator.answer("q1", "skip")
    result = await coordinator.skip("q1")

    assert result.outcome is QuestionOutcome.SUBMITTED
    assert result.answers == [[], []]


@pytest.mark.anyio
async def test_reject_removes_and_notifies_runtime(fake_runtime) -> None:
    coordinator = QuestionCoordinator(fake_runtime)
    coordinator.register(_event(), "c1", "chat")

    result = await coordinator.reject("q1")

    assert result.outcome is QuestionOutcome.REJECTED
    assert fake_runtime.calls_named("reject_question") == [("q1",)]
    assert coordinator.get_by_session("s1") is None


@pytest.mark.anyio
async def test_unknown_or_outdated_requests_are_stale(fake_runtime) -> None:
    coordinator = QuestionCoordinator(fake_runtime)
    coordinator.register(_event(), "c1", "chat")

    assert (await coordinator.answer("missing", "A")).outcome is QuestionOutcome.STALE
    assert (await coordinator.answer("q1", "A", question_index=1)).outcome is QuestionOutcome.STALE
    assert (await coordinator.reject("missing")).outcome is QuestionOutcome.STALE


@pytest.mark.anyio
async def test_empty_reply_is_invalid(fake_runtime) -> None:
    coordinator = QuestionCoordinator(fake_runtime)
    coordinator.register(_event(), "c1", "chat")

    result = await coordinator.answer("q1", "   ")

    assert result.outcome is QuestionOutcome.INVALID
    assert coordinator.get("q1").current_index == 0  # type: ignore[union-attr]


@pytest.mark.anyio
async def test_select_ignores_unknown_labels(fake_runtime) -> None:
    coordinator = QuestionCoordinator(fake_runtime)
    coordinator.register(_event(), "c1", "chat")

    invalid = await coordinator.select("q1", ["Nope"])
    valid = await coordinator.select("q1", ["No", "Yes"])

    assert invalid.outcome is QuestionOutcome.INVALID
    assert valid.outcome is QuestionOutcome.ADVANCED
    assert valid.pending.draft_answers[0] == ["No"]  # type: ignore[union-attr]


def test_custom_and_selected_answers_are_exclusive(fake_runtime) -> None:
    coordinator = QuestionCoordinator(fake_runtime)
    pending = coordinator.register(_event(), "c1", "chat")

    coordinator.set_draft_answer("q1", 0, ["Yes"])
    coordinator.set_custom_answer("q1", 0, "something else")
    assert pending.draft_answers[0] == []
    assert pending.answers()[0] == ["something else"]

    coordinator.set_draft_answer("q1", 0, ["No"])
    assert pending.draft_custom_answers[0] == ""
    assert pending.answers()[0] == ["No"]

    assert coordinator.set_draft_answer("q1", 5, ["No"]) is False


@pytest.mark.anyio
async def test_failed_submit_keeps_pending(fake_runtime) -> None:
    coordinator = QuestionCoordinator(fake_runtime)
    coordinator.register(_event(), "c1", "chat")
    fake_runtime.result = False

    await coordinator.answer("q1", "B")
    result = await coordinator.answer("q1", "nothing")

    assert result.outcome is QuestionOutcome.FAILED
    assert coordinator.get("q1") is not None

    fake_runtime.result = True
    retried = await coordinator.answer("q1", "nothing", question_index=1)
    assert retried.outcome is QuestionOutcome.SUBMITTED
    assert retried.answers == [["No"], ["nothing"]]


def test_questions_expire(fake_runtime) -> None:
    clock = _Clock()
    coordinator = QuestionCoordinator(fake_runtime, ttl_seconds=10, clock=clock)
    coordinator.register(_event(), "c1", "chat")

    clock.now = 11

    assert coordinator.get("q1") is None
    assert coordinator.get_by_conversation("c1") is None


def test_new_question_replaces_previous_for_session(fake_runtime) -> None:
    coordinator = QuestionCoordinator(fake_runtime)
    coordinator.register(_event("q1"), "c1", "chat")
    coordinator.register(_event("q2"), "c1", "chat")

    assert coordinator.get("q1") is None
    assert coordinator.get_by_session("s1").request_id == "q2"  # type: ignore[union-attr]


def test_option_pages_are_clamped(fake_runtime) -> None:
    coordinator = QuestionCoordinator(fake_runtime, option_page_size=2)
    pending = coordinator.register(_event(options=5), "c1", "chat")

    assert coordinator.set_option_page("q1", 0, 9) is True
    options, page, pages = pending.options_page(2)

    assert (page, pages) == (2, 3)
    assert [o.label for o in options] == ["opt4"]
    assert coordinator.set_option_page("q1", 0, -1) is False


def test_drop_session(fake_runtime) -> None:
    coordinator = QuestionCoordinator(fake_runtime)
    coordinator.register(_event(), "c1", "chat")

    coordinator.drop_session("s1")

    assert coordinator.get("q1") is None
