"""Conversation renderer: runtime events in, chat artifacts out.

``ConversationRenderer`` owns every per-conversation store (reconciler,
timelines, render buffer, ledger, permission queue, question coordinator) and
wires them along the data flow:

    runtime event -> reconciler -> timeline + buffer -> flush
    flush -> paginator.render -> paginator.sync -> ledger

All state is mutated synchronously around the awaited sink/runtime calls, so no
locking is needed inside one event loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from cachetools import TTLCache

from chatrelay.backends.protocols import RenderSink, RuntimeControl
from chatrelay.config.settings import Settings, get_settings
from chatrelay.coordinators.permissions import (
    PendingPermission,
    PermissionQueue,
    ResolveOutcome,
    parse_permission_reply,
)
from chatrelay.coordinators.questions import (
    PendingQuestion,
    QuestionCoordinator,
    QuestionOutcome,
    QuestionResult,
)
from chatrelay.errors import UnknownConversationError
from chatrelay.events import (
    MessageUpdatedEvent,
    PartUpdatedEvent,
    PermissionRequestEvent,
    QuestionAskedEvent,
    RuntimeEvent,
    SessionErrorEvent,
    SessionIdleEvent,
    SessionStatusEvent,
)
from chatrelay.interactions.ledger import Interaction, InteractionKind, InteractionLedger
from chatrelay.interactions.undo import UndoEngine, UndoResult
from chatrelay.observability.logging import conversation_context, get_logger
from chatrelay.observability.metrics import RENDER_PASSES
from chatrelay.streaming.buffer import BufferEntry, RenderBuffer, TurnStatus
from chatrelay.streaming.cards import build_answer_ack_card, build_notice_card, build_question_card
from chatrelay.streaming.notes import ErrorNoteDeduplicator, classify_runtime_error
from chatrelay.streaming.paginator import CardPaginator
from chatrelay.streaming.reconciler import DeltaReconciler
from chatrelay.streaming.timeline import SegmentKind, TimelineStore, ToolState, ToolStatus

logger = get_logger(__name__)

__all__ = ["ConversationRenderer", "SessionBinding"]

_TOOL_STATUSES = {
    "pending": ToolStatus.PENDING,
    "running": ToolStatus.RUNNING,
    "completed": ToolStatus.COMPLETED,
    "error": ToolStatus.FAILED,
    "failed": ToolStatus.FAILED,
}

_SNAPSHOT_CHARS = 2000


@dataclass(frozen=True)
class SessionBinding:
    conversation_key: str
    chat_id: str
    session_id: str


def _tool_output(state: dict[str, Any]) -> str:
    for key in ("output", "error"):
        value = state.get(key)
        if isinstance(value, str) and value.strip():
            return value
    title = state.get("title")
    return title if isinstance(title, str) else ""


def _part_payload(event: PartUpdatedEvent) -> str:
    part = event.part
    if part is not None and part.text is not None:
        return part.text
    return event.delta if isinstance(event.delta, str) else ""


class ConversationRenderer:
    """Owns all per-conversation rendering state and the flush pipeline."""

    def __init__(
        self,
        sink: RenderSink,
        runtime: RuntimeControl,
        *,
        reconciler: DeltaReconciler | None = None,
        timelines: TimelineStore | None = None,
        buffer: RenderBuffer | None = None,
        paginator: CardPaginator | None = None,
        ledger: InteractionLedger | None = None,
        permissions: PermissionQueue | None = None,
        questions: QuestionCoordinator | None = None,
        notes: ErrorNoteDeduplicator | None = None,
        undo: UndoEngine | None = None,
        finished_message_ttl_seconds: float = 600.0,
    ) -> None:
        self.sink = sink
        self.runtime = runtime
        self.reconciler = reconciler or DeltaReconciler()
        self.timelines = timelines or TimelineStore()
        self.buffer = buffer or RenderBuffer()
        self.buffer.set_flush_callback(self._flush)
        self.paginator = paginator or CardPaginator()
        self.ledger = ledger or InteractionLedger()
        self.permissions = permissions or PermissionQueue()
        self.questions = questions or QuestionCoordinator(runtime)
        self.notes = notes or ErrorNoteDeduplicator()
        self.undo_engine = undo or UndoEngine(self.ledger, runtime, sink)
        self._bindings: dict[str, SessionBinding] = {}
        self._by_session: dict[str, str] = {}
        self._turn_messages: dict[str, set[str]] = {}
        self._finished_messages: TTLCache[str, bool] = TTLCache(
            maxsize=4096, ttl=finished_message_ttl_seconds
        )

    @classmethod
    def from_settings(
        cls,
        sink: RenderSink,
        runtime: RuntimeControl,
        cfg: Settings | None = None,
    ) -> "ConversationRenderer":
        cfg = cfg or get_settings()
        ledger = InteractionLedger(cfg.ledger_max_entries)
        return cls(
            sink,
            runtime,
            timelines=TimelineStore(cfg.timeline_max_segments, cfg.tool_output_max_chars),
            buffer=RenderBuffer(min_interval_seconds=cfg.output_update_interval_ms / 1000.0),
            paginator=CardPaginator(
                cfg.card_component_budget, option_page_size=cfg.question_option_page_size
            ),
            ledger=ledger,
            permissions=PermissionQueue(
                cfg.permission_request_ttl_seconds, whitelist=cfg.tool_whitelist
            ),
            questions=QuestionCoordinator(
                runtime,
                ttl_seconds=cfg.question_ttl_seconds,
                option_page_size=cfg.question_option_page_size,
            ),
            notes=ErrorNoteDeduplicator(cfg.error_note_dedup_ttl_seconds),
            undo=UndoEngine(ledger, runtime, sink, notice_seconds=cfg.undo_notice_seconds),
        )

    # -- session bindings -------------------------------------------------

    def bind_session(self, conversation_key: str, chat_id: str, session_id: str) -> SessionBinding:
        previous = self._bindings.get(conversation_key)
        if previous is not None and previous.session_id != session_id:
            self._by_session.pop(previous.session_id, None)
        binding = SessionBinding(conversation_key, chat_id, session_id)
        self._bindings[conversation_key] = binding
        self._by_session[session_id] = conversation_key
        return binding

    def unbind(self, conversation_key: str) -> None:
        binding = self._bindings.pop(conversation_key, None)
        if binding is None:
            return
        self._by_session.pop(binding.session_id, None)
        self.buffer.drop(conversation_key)
        self.timelines.drop(conversation_key)
        self.reconciler.purge(binding.session_id)
        self.permissions.drop(conversation_key)
        self.questions.drop_session(binding.session_id)
        self.notes.clear_session(binding.session_id)
        self.ledger.drop(conversation_key)
        self._turn_messages.pop(conversation_key, None)

    def binding(self, conversation_key: str) -> SessionBinding:
        binding = self._bindings.get(conversation_key)
        if binding is None:
            raise UnknownConversationError(f"No session bound to conversation {conversation_key!r}")
        return binding

    def binding_for_session(self, session_id: str) -> SessionBinding | None:
        key = self._by_session.get(session_id)
        return self._bindings.get(key) if key else None

    # -- turn lifecycle ---------------------------------------------------

    def begin_turn(self, conversation_key: str, user_artifact_id: str | None = None) -> BufferEntry:
        """Start rendering a new turn for fresh user input; a previous live turn is retired as stopped."""
        binding = self.binding(conversation_key)
        self.notes.clear_session(binding.session_id)
        return self._open_turn(binding, user_artifact_id)

    def _open_turn(
        self,
        binding: SessionBinding,
        user_artifact_id: str | None,
        *,
        fresh_output: bool = True,
    ) -> BufferEntry:
        conversation_key = binding.conversation_key
        live = self.buffer.get(conversation_key)
        if live is not None and not live.closed:
            logger.info(
                "turn_replaced",
                conversation_key=conversation_key,
                previous_status=live.status.value,
            )
            self.buffer.retire(conversation_key)
        if fresh_output:
            # a turn opened by an error must keep that error's fingerprint
            self.notes.forget_fingerprints(binding.session_id)
        timeline = self.timelines.reset(conversation_key)
        self.reconciler.purge(binding.session_id)
        self._turn_messages[conversation_key] = set()
        entry = self.buffer.get_or_create(
            conversation_key, binding.chat_id, binding.session_id, user_artifact_id
        )
        entry.timeline = timeline
        return entry

    def _live_entry(self, binding: SessionBinding, *, fresh_output: bool = True) -> BufferEntry:
        entry = self.buffer.get(binding.conversation_key)
        if entry is None or entry.closed:
            entry = self._open_turn(binding, None, fresh_output=fresh_output)
        return entry

    def finish_turn(
        self,
        conversation_key: str,
        status: TurnStatus = TurnStatus.COMPLETED,
        *,
        final_text: str | None = None,
        final_reasoning: str | None = None,
    ) -> None:
        if self.buffer.get(conversation_key) is None:
            return
        self.buffer.set_final_output(conversation_key, final_text, final_reasoning)
        self.buffer.set_status(conversation_key, status)

    async def abort_turn(self, conversation_key: str) -> bool:
        """Ask the runtime to stop and mark the live turn aborted."""
        binding = self.binding(conversation_key)
        try:
            ok = bool(await self.runtime.abort(binding.session_id))
        except Exception as exc:
            logger.warning("abort_failed", session_id=binding.session_id, error=str(exc))
            ok = False
        self.buffer.set_status(conversation_key, TurnStatus.ABORTED)
        return ok

    async def wait_idle(self, conversation_key: str) -> None:
        await self.buffer.wait_idle(conversation_key)
        await self.paginator.wait_background()

    async def aclose(self) -> None:
        for key in self.buffer.keys():
            await self.buffer.wait_idle(key)
        await self.paginator.wait_background()
        await self.undo_engine.wait_background()

    # -- inbound events ---------------------------------------------------

    async def dispatch(self, event: RuntimeEvent) -> None:
        session_id = (
            event.resolved_session_id if isinstance(event, PartUpdatedEvent) else event.session_id
        )
        binding = self.binding_for_session(session_id)
        if binding is None:
            logger.debug("event_unbound_session", event_type=event.type, session_id=session_id)
            return

        with conversation_context(binding.conversation_key, session_id):
            if isinstance(event, PartUpdatedEvent):
                self.handle_part_updated(binding, event)
            elif isinstance(event, SessionStatusEvent):
                self.handle_session_status(binding, event)
            elif isinstance(event, SessionIdleEvent):
                self.finish_turn(binding.conversation_key, TurnStatus.COMPLETED)
            elif isinstance(event, SessionErrorEvent):
                self.handle_error(binding, event.error, None)
            elif isinstance(event, MessageUpdatedEvent):
                self.handle_message_updated(binding, event)
            elif isinstance(event, QuestionAskedEvent):
                await self.handle_question_asked(binding, event)
            elif isinstance(event, PermissionRequestEvent):
                await self.handle_permission_request(binding, event)

    def handle_part_updated(self, binding: SessionBinding, event: PartUpdatedEvent) -> None:
        part = event.part
        if part is None:
            return
        if part.message_id and part.message_id in self._finished_messages:
            logger.debug("part_for_finished_message", message_id=part.message_id)
            return

        key = binding.conversation_key
        session_id = binding.session_id
        part_type = part.type

        if part_type in ("text", "reasoning"):
            payload = _part_payload(event)
            if not payload:
                return
            # opening a turn purges reconciler state, so it must precede apply()
            self._live_entry(binding)
            appended = self.reconciler.apply(session_id, part.id, part_type, payload)
            if not appended:
                return
            self._remember_message(key, part.message_id)
            kind = SegmentKind.TEXT if part_type == "text" else SegmentKind.REASONING
            segment_key = f"{part_type}:{part.id or part.message_id or 'anonymous'}"
            self.timelines.get_or_create(key).append_text(segment_key, kind, appended)
            if kind is SegmentKind.TEXT:
                self.buffer.append_text(key, appended)
            else:
                self.buffer.append_reasoning(key, appended)
            return

        if part_type == "tool":
            state = part.state or {}
            status = _TOOL_STATUSES.get(str(state.get("status") or "pending"), ToolStatus.PENDING)
            tool_key = f"tool:{part.call_id or part.id or part.tool}"
            self._apply_tool(
                binding,
                part.message_id,
                tool_key,
                ToolState(name=part.tool or "unknown", status=status, output=_tool_output(state)),
            )
            return

        if part_type in ("subtask", "agent"):
            name = part.agent or part.description or "sub-task"
            state = part.state or {}
            status = _TOOL_STATUSES.get(str(state.get("status") or "running"), ToolStatus.RUNNING)
            self._apply_tool(
                binding,
                part.message_id,
                f"subtask:{part.id or name}",
                ToolState(
                    name=name,
                    status=status,
                    output=(part.description or "") if part.agent else "",
                    subtask=True,
                ),
            )
            return

        if part_type == "retry":
            self._live_entry(binding)
            reason = classify_runtime_error(part.error).text if part.error else "temporary failure"
            attempt = f" (attempt {part.attempt})" if part.attempt else ""
            self.timelines.get_or_create(key).upsert_note(
                f"retry:{part.id or 'part'}", f"🔁 Retrying{attempt}: {reason}", "retry"
            )
            self.buffer.touch(key)
            return

        if part_type == "compaction":
            self._live_entry(binding)
            self.timelines.get_or_create(key).upsert_note(
                f"compaction:{part.id or 'part'}",
                "🗜️ Conversation context was compacted.",
                "compaction",
            )
            self.buffer.touch(key)

    def _apply_tool(
        self,
        binding: SessionBinding,
        message_id: str | None,
        tool_key: str,
        state: ToolState,
    ) -> None:
        key = binding.conversation_key
        self._live_entry(binding)
        self._remember_message(key, message_id)
        segment = self.timelines.get_or_create(key).upsert_tool(tool_key, state)
        self.buffer.set_tools(
            key,
            {
                tool_key: ToolState(
                    name=segment.content,
                    status=segment.tool_status or ToolStatus.PENDING,
                    output=segment.tool_output or "",
                    subtask=state.subtask,
                )
            },
        )

    def handle_session_status(self, binding: SessionBinding, event: SessionStatusEvent) -> None:
        key = binding.conversation_key
        if event.status_type == "idle":
            self.finish_turn(key, TurnStatus.COMPLETED)
            return
        if event.status_type != "retry":
            return
        self._live_entry(binding)
        attempt = f" (attempt {event.attempt})" if event.attempt else ""
        message = event.message or "temporary failure"
        self.timelines.get_or_create(key).upsert_note(
            "retry:session", f"🔁 Retrying{attempt}: {message}", "retry"
        )
        self.buffer.touch(key)

    def handle_message_updated(self, binding: SessionBinding, event: MessageUpdatedEvent) -> None:
        info = event.info
        if info.role != "assistant" or info.id in self._finished_messages:
            return
        if info.error:
            self.handle_error(binding, info.error, info.id)
        # looked up after handle_error, which may have opened the turn
        entry = self.buffer.get(binding.conversation_key)
        if entry is not None and not entry.closed and not entry.assistant_message_id:
            entry.assistant_message_id = info.id
        self._remember_message(binding.conversation_key, info.id)

    def handle_error(self, binding: SessionBinding, error: Any, message_id: str | None) -> None:
        if not error:
            return
        if not self.notes.should_emit(binding.session_id, message_id, error):
            return
        note = classify_runtime_error(error)
        self.notes.record(note)
        key = binding.conversation_key
        self._live_entry(binding, fresh_output=False)
        self.timelines.get_or_create(key).upsert_note(
            f"error:{message_id or note.category}", note.text, "error"
        )
        logger.info("runtime_error_noted", category=note.category, message_id=message_id)
        self.buffer.set_status(key, TurnStatus.ABORTED if note.aborted else TurnStatus.FAILED)

    async def handle_question_asked(self, binding: SessionBinding, event: QuestionAskedEvent) -> None:
        if not event.questions:
            logger.warning("question_without_items", request_id=event.id)
            return
        key = binding.conversation_key
        pending = self.questions.register(event, key, binding.chat_id)
        # the live turn card (and its ledger entry) must exist before the prompt
        self._live_entry(binding)
        self.buffer.touch(key, urgent=True)
        await self.buffer.wait_idle(key)
        await self._send_question_prompt(binding, pending)

    async def handle_permission_request(
        self, binding: SessionBinding, event: PermissionRequestEvent
    ) -> None:
        if not event.permission_id:
            logger.warning("permission_without_id", tool=event.tool)
            return
        if self.permissions.is_tool_whitelisted(event.tool):
            try:
                await self.runtime.respond_permission(
                    binding.session_id, event.permission_id, True, False
                )
                logger.info("permission_auto_allowed", tool=event.tool)
                return
            except Exception as exc:
                logger.warning("permission_auto_allow_failed", tool=event.tool, error=str(exc))

        self.permissions.enqueue(
            binding.conversation_key,
            PendingPermission(
                session_id=binding.session_id,
                permission_id=event.permission_id,
                tool=event.tool,
                description=event.description,
                risk=event.risk,
            ),
        )
        self._live_entry(binding)
        self.buffer.touch(binding.conversation_key)

    def _remember_message(self, conversation_key: str, message_id: str | None) -> None:
        if message_id:
            self._turn_messages.setdefault(conversation_key, set()).add(message_id)

    # -- user actions -----------------------------------------------------

    async def respond_permission(
        self,
        conversation_key: str,
        permission_id: str,
        allow: bool,
        remember: bool = False,
    ) -> ResolveOutcome:
        taken = self.permissions.take(conversation_key, permission_id)
        if taken is None:
            return ResolveOutcome.STALE
        index, request = taken
        try:
            ok = bool(
                await self.runtime.respond_permission(
                    request.session_id, request.permission_id, allow, remember
                )
            )
        except Exception as exc:
            logger.warning("permission_response_failed", permission_id=permission_id, error=str(exc))
            ok = False
        if not ok:
            self.permissions.restore(conversation_key, request, index)
            return ResolveOutcome.FAILED
        self.buffer.touch(conversation_key)
        return ResolveOutcome.RESOLVED

    async def respond_permission_text(self, conversation_key: str, text: str) -> ResolveOutcome | None:
        """Answer the oldest pending permission from a chat reply; None if the text is no decision."""
        decision = parse_permission_reply(text)
        if decision is None:
            return None
        head = self.permissions.peek(conversation_key)
        if head is None:
            return ResolveOutcome.STALE
        allow, remember = decision
        return await self.respond_permission(conversation_key, head.permission_id, allow, remember)

    async def answer_question(
        self, conversation_key: str, text: str, user_artifact_id: str | None = None
    ) -> QuestionResult:
        pending = self.questions.get_by_conversation(conversation_key)
        if pending is None:
            return QuestionResult(QuestionOutcome.STALE)
        result = await self.questions.answer(pending.request_id, text)
        return await self._after_question(conversation_key, result, user_artifact_id)

    async def select_question_options(
        self,
        conversation_key: str,
        request_id: str,
        values: list[str],
        question_index: int | None = None,
    ) -> QuestionResult:
        result = await self.questions.select(request_id, values, question_index)
        return await self._after_question(conversation_key, result, None)

    async def skip_question(
        self, conversation_key: str, request_id: str, question_index: int | None = None
    ) -> QuestionResult:
        result = await self.questions.skip(request_id, question_index)
        return await self._after_question(conversation_key, result, None)

    async def reject_question(self, conversation_key: str, request_id: str) -> QuestionResult:
        result = await self.questions.reject(request_id)
        return await self._after_question(conversation_key, result, None)

    async def _after_question(
        self, conversation_key: str, result: QuestionResult, user_artifact_id: str | None
    ) -> QuestionResult:
        pending = result.pending
        if pending is None or result.outcome in (QuestionOutcome.STALE, QuestionOutcome.INVALID):
            return result
        binding = self.binding(conversation_key)

        if result.outcome is QuestionOutcome.ADVANCED:
            await self._send_question_prompt(binding, pending, user_artifact_id)
        elif result.outcome is QuestionOutcome.SUBMITTED:
            ack_id = await self._send(binding.chat_id, build_answer_ack_card(pending, result.answers))
            if ack_id:
                self.ledger.add_interaction(
                    conversation_key,
                    Interaction(
                        bot_artifact_ids=[ack_id],
                        user_artifact_id=user_artifact_id,
                        kind=InteractionKind.QUESTION_ANSWER,
                    ),
                )
        elif result.outcome is QuestionOutcome.FAILED:
            await self._send(
                binding.chat_id,
                build_notice_card("The answers could not be submitted, please reply again.", "red"),
            )
        self.buffer.touch(conversation_key)
        return result

    async def _send_question_prompt(
        self,
        binding: SessionBinding,
        pending: PendingQuestion,
        user_artifact_id: str | None = None,
    ) -> None:
        document = build_question_card(pending, self.questions.option_page_size)
        artifact_id = await self._send(binding.chat_id, document)
        if not artifact_id:
            logger.warning("question_prompt_not_sent", request_id=pending.request_id)
            return
        pending.prompt_artifact_ids.append(artifact_id)
        self.ledger.add_interaction(
            binding.conversation_key,
            Interaction(
                bot_artifact_ids=[artifact_id],
                user_artifact_id=user_artifact_id,
                kind=InteractionKind.QUESTION_PROMPT,
                rendered_snapshot=pending.current.question,
            ),
        )

    async def _send(self, chat_id: str, document: dict[str, Any]) -> str | None:
        try:
            return await self.sink.send_artifact(chat_id, document)
        except Exception as exc:
            logger.warning("artifact_send_error", chat_id=chat_id, error=str(exc))
            return None

    async def undo(self, conversation_key: str, trigger_artifact_id: str | None = None) -> UndoResult:
        binding = self.binding(conversation_key)
        await self.buffer.wait_idle(conversation_key)
        return await self.undo_engine.perform_undo(
            conversation_key, binding.session_id, binding.chat_id, trigger_artifact_id
        )

    # -- flush ------------------------------------------------------------

    async def _flush(self, entry: BufferEntry) -> None:
        key = entry.conversation_key
        status = entry.status
        # a retired turn no longer owns the conversation's buffer or pending prompts
        current = self.buffer.get(key) is entry
        if current:
            self.buffer.get_and_clear_pending(key)
        timeline = entry.timeline if entry.timeline is not None else self.timelines.get_or_create(key)

        if status.is_terminal:
            if entry.final_text is not None:
                timeline.replace_kind_text(SegmentKind.TEXT, entry.final_text)
            if entry.final_reasoning is not None:
                timeline.replace_kind_text(SegmentKind.REASONING, entry.final_reasoning)
            settled = ToolStatus.COMPLETED if status is TurnStatus.COMPLETED else ToolStatus.FAILED
            for tool_key, tool in timeline.tool_states().items():
                if not tool.status.is_terminal:
                    timeline.upsert_tool(tool_key, ToolState(tool.name, settled, subtask=tool.subtask))

        segments = timeline.snapshot()
        permission = self.permissions.peek(key) if current else None
        question = self.questions.get_by_session(entry.session_id) if current else None
        visible = (
            entry.text.strip()
            or entry.reasoning.strip()
            or segments
            or entry.tools
            or permission is not None
            or question is not None
        )
        if status is TurnStatus.RUNNING and not visible:
            RENDER_PASSES.labels(outcome="suppressed").inc()
            return

        documents = self.paginator.render(
            segments,
            status,
            permission=permission,
            pending_permissions=self.permissions.size(key) if permission else 0,
            question=question,
        )
        previous_ids = list(entry.artifact_ids)
        try:
            artifact_ids = await self.paginator.sync(entry.chat_id, previous_ids, documents, self.sink)
        except Exception:
            RENDER_PASSES.labels(outcome="failed").inc()
            raise
        entry.artifact_ids = list(artifact_ids)
        RENDER_PASSES.labels(outcome="rendered").inc()

        if artifact_ids:
            self._record_turn(entry, previous_ids, artifact_ids, segments)

        if status.is_terminal:
            self._close_turn(entry)

    def _record_turn(
        self,
        entry: BufferEntry,
        previous_ids: list[str],
        artifact_ids: list[str],
        segments: list[Any],
    ) -> None:
        known = set(previous_ids) | set(artifact_ids)
        snapshot = "\n".join(s.content for s in segments if s.kind is SegmentKind.TEXT)
        snapshot = snapshot[-_SNAPSHOT_CHARS:]

        def _mutate(interaction: Interaction) -> None:
            interaction.bot_artifact_ids = list(artifact_ids)
            interaction.assistant_message_id = entry.assistant_message_id or interaction.assistant_message_id
            interaction.rendered_snapshot = snapshot

        updated = self.ledger.update_interaction(
            entry.conversation_key, lambda i: i.owns_any(known), _mutate
        )
        if updated is None:
            self.ledger.add_interaction(
                entry.conversation_key,
                Interaction(
                    bot_artifact_ids=list(artifact_ids),
                    user_artifact_id=entry.user_artifact_id,
                    assistant_message_id=entry.assistant_message_id,
                    rendered_snapshot=snapshot,
                    timestamp=entry.created_at,
                ),
            )

    def _close_turn(self, entry: BufferEntry) -> None:
        key = entry.conversation_key
        if self.buffer.get(key) is not entry:
            # a newer turn already took over this conversation
            entry.closed = True
            return
        for message_id in self._turn_messages.pop(key, set()):
            self._finished_messages[message_id] = True
        self.reconciler.purge(entry.session_id)
        self.buffer.drop(key)
        logger.info(
            "turn_closed",
            conversation_key=key,
            status=entry.status.value,
            artifacts=len(entry.artifact_ids),
        )

    # -- introspection ----------------------------------------------------

    def pending_permission(self, conversation_key: str) -> Optional[PendingPermission]:
        return self.permissions.peek(conversation_key)

    def pending_question(self, conversation_key: str) -> Optional[PendingQuestion]:
        return self.questions.get_by_conversation(conversation_key)
