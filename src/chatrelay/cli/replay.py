"""Replay a recorded runtime event stream through the renderer."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import anyio
import click

from chatrelay.backends.console import ConsoleRenderSink
from chatrelay.backends.protocols import RuntimeMessage
from chatrelay.cli.ui import console, render_artifacts_table, render_ledger_table
from chatrelay.config import get_settings
from chatrelay.events import MessageUpdatedEvent, PartUpdatedEvent, RuntimeEvent, parse_runtime_event
from chatrelay.renderer import ConversationRenderer


class ReplayRuntime:
    """Runtime control that records calls and answers from the replayed history."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.messages: list[RuntimeMessage] = []

    def observe(self, event: RuntimeEvent) -> None:
        if isinstance(event, MessageUpdatedEvent):
            if all(m.id != event.info.id for m in self.messages):
                self.messages.append(RuntimeMessage(event.info.id, event.info.role))

    async def abort(self, session_id: str) -> bool:
        self.calls.append(("abort", (session_id,)))
        return True

    async def list_messages(self, session_id: str) -> list[RuntimeMessage]:
        self.calls.append(("list_messages", (session_id,)))
        return list(self.messages)

    async def rollback(self, session_id: str, target_message_id: str) -> bool:
        self.calls.append(("rollback", (session_id, target_message_id)))
        return True

    async def respond_permission(
        self, session_id: str, permission_id: str, allow: bool, remember: bool = False
    ) -> bool:
        self.calls.append(("respond_permission", (session_id, permission_id, allow, remember)))
        return True

    async def reply_question(self, request_id: str, answers: list[list[str]]) -> bool:
        self.calls.append(("reply_question", (request_id, answers)))
        return True

    async def reject_question(self, request_id: str) -> bool:
        self.calls.append(("reject_question", (request_id,)))
        return True


def load_events(path: Path) -> list[RuntimeEvent]:
    """Read JSON-lines envelopes (``{"type", "properties"}``) into typed events."""
    events: list[RuntimeEvent] = []
    for line_no, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        if not line.strip():
            continue
        try:
            envelope = json.loads(line)
        except json.JSONDecodeError as exc:
            raise click.ClickException(f"{path}:{line_no}: invalid JSON ({exc.msg})") from exc
        if not isinstance(envelope, dict):
            continue
        if isinstance(envelope.get("payload"), dict):
            envelope = envelope["payload"]
        event = parse_runtime_event(str(envelope.get("type", "")), envelope.get("properties"))
        if event is not None:
            events.append(event)
    return events


def _session_of(event: RuntimeEvent) -> str:
    if isinstance(event, PartUpdatedEvent):
        return event.resolved_session_id
    return event.session_id


@click.command("replay")
@click.argument("events_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--chat-id", default="local", show_default=True, help="Chat the cards are sent to")
@click.option("--conversation-key", default="replay", show_default=True)
@click.option("--session-id", default=None, help="Session to render (default: first one seen)")
@click.option("--answer", "answers", multiple=True, help="Reply sent to pending questions, in order")
@click.option("--undo", "undo_after", is_flag=True, help="Run one undo after the replay")
@click.option("--quiet", is_flag=True, help="Only print the summary tables")
def replay(
    events_file: Path,
    chat_id: str,
    conversation_key: str,
    session_id: str | None,
    answers: tuple[str, ...],
    undo_after: bool,
    quiet: bool,
) -> None:
    """Feed a recorded runtime event stream through the renderer."""
    events = load_events(events_file)
    if not events:
        raise click.ClickException(f"No runtime events in {events_file}")
    session = session_id or next((s for s in map(_session_of, events) if s), "")
    if not session:
        raise click.ClickException("Could not determine the session id; pass --session-id")

    cfg = get_settings().model_copy(update={"output_update_interval_ms": 0})
    sink = ConsoleRenderSink(console, quiet=quiet)
    runtime = ReplayRuntime()

    async def _run() -> ConversationRenderer:
        renderer = ConversationRenderer.from_settings(sink, runtime, cfg)
        renderer.bind_session(conversation_key, chat_id, session)
        renderer.begin_turn(conversation_key)
        pending_answers = list(answers)
        for event in events:
            runtime.observe(event)
            await renderer.dispatch(event)
            await renderer.wait_idle(conversation_key)
            while pending_answers and renderer.pending_question(conversation_key) is not None:
                await renderer.answer_question(conversation_key, pending_answers.pop(0))
                await renderer.wait_idle(conversation_key)
        if undo_after:
            result = await renderer.undo(conversation_key)
            console.print(f"[bold]undo:[/bold] {result.message}")
        await renderer.aclose()
        return renderer

    try:
        renderer = anyio.run(_run)
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc

    render_artifacts_table(sink.artifacts.values())
    render_ledger_table(renderer.ledger.entries(conversation_key))


def register(cli: click.Group) -> None:
    cli.add_command(replay)
