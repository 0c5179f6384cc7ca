"""End-to-end tests for the conversation renderer against fake sink/runtime."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from chatrelay.coordinators.permissions import PermissionQueue, ResolveOutcome
from chatrelay.coordinators.questions import QuestionOutcome
from chatrelay.errors import UnknownConversationError
from chatrelay.events import parse_runtime_event
from chatrelay.interactions.ledger import InteractionKind
from chatrelay.renderer import ConversationRenderer


def _dump(document: dict[str, Any]) -> str:
    return json.dumps(document, ensure_ascii=False)


def _title(document: dict[str, Any]) -> str:
    return document["header"]["title"]["content"]


def _text_part(text: str, *, part_id: str = "p1", message_id: str = "m1") -> Any:
    return parse_runtime_event(
        "message.part.updated",
        {
            "part": {
                "id": part_id,
                "type": "text",
                "sessionID": "s1",
                "messageID": message_id,
                "text": text,
            }
        },
    )


def _idle() -> Any:
    return parse_runtime_event("session.idle", {"sessionID": "s1"})


@pytest.fixture
def renderer(fake_sink, fake_runtime) -> ConversationRenderer:
    renderer = ConversationRenderer.from_settings(fake_sink, fake_runtime)
    renderer.bind_session("c1", "chat-1", "s1")
    return renderer


@pytest.mark.anyio
async def test_turn_without_output_sends_nothing(renderer, fake_sink) -> None:
    renderer.begin_turn("c1")
    renderer.buffer.touch("c1")
    await renderer.dispatch(_text_part(""))

    await renderer.wait_idle("c1")

    assert fake_sink.call_count == 0


@pytest.mark.anyio
async def test_streamed_text_renders_once_and_is_recorded(renderer, fake_sink) -> None:
    await renderer.dispatch(_text_part("Hel"))
    await renderer.dispatch(_text_part("Hello"))
    await renderer.dispatch(_idle())

    await renderer.wait_idle("c1")

    assert len(fake_sink.sent) == 1
    chat_id, artifact_id, document = fake_sink.sent[0]
    assert chat_id == "chat-1"
    assert _title(document) == "Completed"
    assert "Hello" in _dump(document)
    assert "HelHello" not in _dump(document)
    entries = renderer.ledger.entries("c1")
    assert len(entries) == 1
    assert entries[0].bot_artifact_ids == [artifact_id]
    assert entries[0].rendered_snapshot == "Hello"


@pytest.mark.anyio
async def test_late_replay_of_finished_message_is_ignored(renderer, fake_sink) -> None:
    await renderer.dispatch(_text_part("Hello"))
    await renderer.dispatch(_idle())
    await renderer.wait_idle("c1")
    calls = fake_sink.call_count

    await renderer.dispatch(_text_part("Hello"))
    await renderer.wait_idle("c1")

    assert fake_sink.call_count == calls
    assert renderer.buffer.get("c1") is None


@pytest.mark.anyio
async def test_tool_parts_render_as_panels(renderer, fake_sink) -> None:
    await renderer.dispatch(
        parse_runtime_event(
            "message.part.updated",
            {
                "part": {
                    "id": "t1",
                    "type": "tool",
                    "callID": "call-1",
                    "tool": "bash",
                    "sessionID": "s1",
                    "messageID": "m1",
                    "state": {"status": "completed", "output": "total 0"},
                }
            },
        )
    )
    await renderer.dispatch(_idle())
    await renderer.wait_idle("c1")

    document = fake_sink.sent[-1][2]
    panel = document["body"]["elements"][0]
    assert panel["header"]["title"]["content"] == "✅ Tool · bash"
    assert "total 0" in _dump(panel)


@pytest.mark.anyio
async def test_running_tool_is_settled_when_turn_completes(renderer, fake_sink) -> None:
    await renderer.dispatch(
        parse_runtime_event(
            "message.part.updated",
            {
                "part": {
                    "id": "t1",
                    "type": "tool",
                    "tool": "grep",
                    "sessionID": "s1",
                    "state": {"status": "running"},
                }
            },
        )
    )
    await renderer.dispatch(_idle())
    await renderer.wait_idle("c1")

    document = list(fake_sink.documents.values())[-1]
    assert document["body"]["elements"][0]["header"]["title"]["content"] == "✅ Tool · grep"


@pytest.mark.anyio
async def test_whitelisted_permission_is_auto_allowed(fake_sink, fake_runtime) -> None:
    renderer = ConversationRenderer(
        fake_sink, fake_runtime, permissions=PermissionQueue(whitelist=["read"])
    )
    renderer.bind_session("c1", "chat-1", "s1")

    await renderer.dispatch(
        parse_runtime_event("permission.asked", {"id": "p1", "sessionID": "s1", "permission": "Read"})
    )

    assert fake_runtime.calls_named("respond_permission") == [("s1", "p1", True, False)]
    assert renderer.pending_permission("c1") is None
    assert fake_sink.call_count == 0


@pytest.mark.anyio
async def test_permission_is_shown_and_answered(renderer, fake_sink, fake_runtime) -> None:
    await renderer.dispatch(
        parse_runtime_event(
            "permission.asked",
            {"id": "p1", "sessionID": "s1", "permission": "bash", "metadata": {"command": "rm -rf build"}},
        )
    )
    await renderer.wait_idle("c1")

    assert renderer.pending_permission("c1").permission_id == "p1"  # type: ignore[union-attr]
    assert "🔐 Permission · bash" in _dump(fake_sink.sent[0][2])

    assert await renderer.respond_permission_text("c1", "maybe") is None
    assert await renderer.respond_permission_text("c1", "always") is ResolveOutcome.RESOLVED
    assert fake_runtime.calls_named("respond_permission") == [("s1", "p1", True, True)]
    assert await renderer.respond_permission("c1", "p1", True) is ResolveOutcome.STALE
    await renderer.wait_idle("c1")


@pytest.mark.anyio
async def test_failed_permission_response_stays_pending(renderer, fake_runtime) -> None:
    await renderer.dispatch(
        parse_runtime_event("permission.asked", {"id": "p1", "sessionID": "s1", "permission": "bash"})
    )
    fake_runtime.result = False

    outcome = await renderer.respond_permission("c1", "p1", False)

    assert outcome is ResolveOutcome.FAILED
    assert renderer.pending_permission("c1") is not None
    await renderer.wait_idle("c1")


@pytest.mark.anyio
async def test_failed_permission_response_keeps_queue_head(renderer, fake_runtime) -> None:
    for permission_id in ("p1", "p2"):
        await renderer.dispatch(
            parse_runtime_event(
                "permission.asked", {"id": permission_id, "sessionID": "s1", "permission": "bash"}
            )
        )
    head = renderer.pending_permission("c1")
    assert head is not None
    enqueued_at = head.enqueued_at
    fake_runtime.result = False

    assert await renderer.respond_permission_text("c1", "yes") is ResolveOutcome.FAILED

    after = renderer.pending_permission("c1")
    assert after is not None
    assert after.permission_id == "p1"
    assert after.enqueued_at == enqueued_at
    assert renderer.permissions.size("c1") == 2
    await renderer.wait_idle("c1")


@pytest.mark.anyio
async def test_session_error_fails_the_turn(renderer, fake_sink) -> None:
    error = {"name": "ProviderAuthError", "data": {"providerID": "anthropic"}}
    await renderer.dispatch(parse_runtime_event("session.error", {"sessionID": "s1", "error": error}))
    await renderer.wait_idle("c1")
    await renderer.dispatch(parse_runtime_event("session.error", {"sessionID": "s1", "error": error}))
    await renderer.wait_idle("c1")

    assert len(fake_sink.sent) == 1
    document = fake_sink.sent[0][2]
    assert _title(document) == "Failed"
    assert "⚠️ Authentication with anthropic failed" in _dump(document)


@pytest.mark.anyio
async def test_abort_marks_turn_stopped(renderer, fake_sink, fake_runtime) -> None:
    await renderer.dispatch(_text_part("Working on it"))

    assert await renderer.abort_turn("c1") is True
    await renderer.wait_idle("c1")

    assert fake_runtime.calls_named("abort") == [("s1",)]
    assert _title(list(fake_sink.documents.values())[-1]) == "Stopped"


@pytest.mark.anyio
async def test_final_text_replaces_streamed_text(renderer, fake_sink) -> None:
    await renderer.dispatch(_text_part("draft"))

    renderer.finish_turn("c1", final_text="Final answer")
    await renderer.wait_idle("c1")

    dumped = _dump(list(fake_sink.documents.values())[-1])
    assert "Final answer" in dumped
    assert "draft" not in dumped


@pytest.mark.anyio
async def test_question_flow_and_undo_cascade(renderer, fake_sink, fake_runtime) -> None:
    renderer.begin_turn("c1", user_artifact_id="u0")
    await renderer.dispatch(_text_part("Let me ask", message_id="m2"))
    await renderer.dispatch(
        parse_runtime_event(
            "message.updated", {"info": {"id": "m2", "role": "assistant", "sessionID": "s1"}}
        )
    )
    await renderer.dispatch(
        parse_runtime_event(
            "question.asked",
            {
                "id": "q1",
                "sessionID": "s1",
                "questions": [
                    {"question": "Proceed?", "options": [{"label": "Yes"}, {"label": "No"}]},
                    {"question": "Notes?"},
                ],
            },
        )
    )

    assert [artifact_id for _, artifact_id, _ in fake_sink.sent] == ["art-1", "art-2"]
    assert _title(fake_sink.sent[1][2]) == "Question 1/2"

    advanced = await renderer.answer_question("c1", "A", user_artifact_id="u1")
    submitted = await renderer.answer_question("c1", "more detail", user_artifact_id="u2")
    await renderer.wait_idle("c1")

    assert advanced.outcome is QuestionOutcome.ADVANCED
    assert submitted.outcome is QuestionOutcome.SUBMITTED
    assert fake_runtime.calls_named("reply_question") == [("q1", [["Yes"], ["more detail"]])]
    assert [e.kind for e in renderer.ledger.entries("c1")] == [
        InteractionKind.NORMAL,
        InteractionKind.QUESTION_PROMPT,
        InteractionKind.QUESTION_PROMPT,
        InteractionKind.QUESTION_ANSWER,
    ]
    assert renderer.pending_question("c1") is None

    fake_runtime.add_message("m1", "user")
    fake_runtime.add_message("m2", "assistant")
    result = await renderer.undo("c1", trigger_artifact_id="cmd")

    assert result.ok
    assert len(fake_runtime.calls_named("rollback")) == 1
    assert fake_sink.deleted == ["art-4", "u2", "art-3", "u1", "art-2", "cmd"]
    entries = renderer.ledger.entries("c1")
    assert len(entries) == 1
    assert entries[0].bot_artifact_ids == ["art-1"]
    assert entries[0].user_artifact_id == "u0"
    assert entries[0].assistant_message_id == "m2"


@pytest.mark.anyio
async def test_undo_with_empty_ledger(renderer, fake_sink) -> None:
    result = await renderer.undo("c1")

    assert result.ok is False
    assert _title(fake_sink.sent[0][2]) == "Notice"


@pytest.mark.anyio
async def test_events_for_unbound_sessions_are_ignored(renderer, fake_sink) -> None:
    await renderer.dispatch(
        parse_runtime_event(
            "message.part.updated",
            {"part": {"id": "p1", "type": "text", "sessionID": "other", "text": "hi"}},
        )
    )

    assert renderer.buffer.keys() == []
    assert fake_sink.call_count == 0


def test_unknown_conversation_raises(renderer) -> None:
    with pytest.raises(UnknownConversationError):
        renderer.binding("nope")
    with pytest.raises(UnknownConversationError):
        renderer.begin_turn("nope")


def test_unbind_forgets_session(renderer) -> None:
    renderer.unbind("c1")

    assert renderer.binding_for_session("s1") is None


def _assistant_error(message_id: str, error: dict[str, Any]) -> Any:
    return parse_runtime_event(
        "message.updated",
        {"info": {"id": message_id, "sessionID": "s1", "role": "assistant", "error": error}},
    )


@pytest.mark.anyio
async def test_same_error_on_next_message_fails_that_turn(renderer, fake_sink) -> None:
    error = {"name": "APIError", "data": {"statusCode": 429, "message": "rate limited"}}
    await renderer.dispatch(_assistant_error("m1", error))
    await renderer.wait_idle("c1")

    await renderer.dispatch(_text_part("trying again", part_id="p2", message_id="m2"))
    await renderer.wait_idle("c1")
    await renderer.dispatch(_assistant_error("m2", error))
    await renderer.dispatch(parse_runtime_event("session.error", {"sessionID": "s1", "error": error}))
    await renderer.wait_idle("c1")

    assert len(fake_sink.sent) == 2
    first, second = (fake_sink.documents[artifact_id] for _, artifact_id, _ in fake_sink.sent)
    assert _title(first) == "Failed"
    assert _title(second) == "Failed"
    assert _dump(second).count("rate limiting") == 1


@pytest.mark.anyio
async def test_new_turn_keeps_card_already_being_sent(renderer, fake_sink) -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    send = fake_sink.send_artifact

    async def _slow_send(chat_id: str, document: dict[str, Any]) -> str | None:
        artifact_id = await send(chat_id, document)
        if artifact_id == "art-1":
            started.set()
            await release.wait()
        return artifact_id

    fake_sink.send_artifact = _slow_send  # type: ignore[method-assign]
    renderer.begin_turn("c1", user_artifact_id="u1")
    await renderer.dispatch(_text_part("first answer"))
    await started.wait()

    renderer.begin_turn("c1", user_artifact_id="u2")
    await renderer.dispatch(_text_part("second answer", part_id="p2", message_id="m2"))
    release.set()
    await renderer.wait_idle("c1")

    owned = {a for entry in renderer.ledger.entries("c1") for a in entry.bot_artifact_ids}
    assert owned == {"art-1", "art-2"}
    assert renderer.ledger.peek_last("c1").user_artifact_id == "u2"  # type: ignore[union-attr]
    first = _dump(fake_sink.documents["art-1"])
    assert _title(fake_sink.documents["art-1"]) == "Stopped"
    assert "first answer" in first
    assert "second answer" not in first
    assert "second answer" in _dump(fake_sink.documents["art-2"])
    assert "art-1" not in fake_sink.deleted
