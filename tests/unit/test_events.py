"""Unit tests for runtime event parsing."""

from __future__ import annotations

from chatrelay.events import (
    MessageUpdatedEvent,
    PartUpdatedEvent,
    PermissionRequestEvent,
    QuestionAskedEvent,
    SessionStatusEvent,
    parse_runtime_event,
)


def test_part_updated_accepts_both_id_spellings() -> None:
    event = parse_runtime_event(
        "message.part.updated",
        {"part": {"id": "p1", "type": "text", "sessionId": "s1", "messageID": "m1", "text": "Hi"}, "delta": "Hi"},
    )

    assert isinstance(event, PartUpdatedEvent)
    assert event.resolved_session_id == "s1"
    assert event.part is not None
    assert event.part.message_id == "m1"
    assert event.delta == "Hi"


def test_session_status_helpers() -> None:
    event = parse_runtime_event(
        "session.status",
        {"sessionID": "s1", "status": {"type": "retry", "attempt": 2, "message": "overloaded"}},
    )

    assert isinstance(event, SessionStatusEvent)
    assert event.status_type == "retry"
    assert event.attempt == 2
    assert event.message == "overloaded"


def test_message_updated_carries_session_and_completion() -> None:
    event = parse_runtime_event(
        "message.updated",
        {"info": {"id": "m1", "role": "assistant", "sessionID": "s1", "time": {"completed": 5}}},
    )

    assert isinstance(event, MessageUpdatedEvent)
    assert event.session_id == "s1"
    assert event.info.is_completed


def test_question_asked() -> None:
    event = parse_runtime_event(
        "question.asked",
        {
            "id": "q1",
            "sessionID": "s1",
            "questions": [{"question": "Go?", "options": [{"label": "Yes"}], "multiple": True}],
        },
    )

    assert isinstance(event, QuestionAskedEvent)
    assert event.questions[0].options[0].label == "Yes"
    assert event.questions[0].multiple is True


def test_permission_label_prefers_permission_field() -> None:
    event = parse_runtime_event(
        "permission.asked",
        {
            "id": "perm1",
            "sessionID": "s1",
            "permission": "bash",
            "tool": {"messageID": "m1", "callID": "c1"},
            "metadata": {"command": "ls"},
        },
    )

    assert isinstance(event, PermissionRequestEvent)
    assert event.permission_id == "perm1"
    assert event.tool == "bash"
    assert event.description == "command=ls"


def test_permission_tool_payload_name() -> None:
    event = parse_runtime_event(
        "permission.updated", {"permissionID": "p2", "sessionID": "s1", "tool": {"name": "edit"}}
    )

    assert isinstance(event, PermissionRequestEvent)
    assert event.tool == "edit"


def test_unknown_and_malformed_events_are_dropped() -> None:
    assert parse_runtime_event("server.connected", {}) is None
    assert parse_runtime_event("message.updated", {"info": {"role": "assistant"}}) is None
    assert parse_runtime_event("question.asked", None) is None
