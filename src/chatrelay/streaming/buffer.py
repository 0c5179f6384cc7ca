"""Per-conversation render buffer with a debounced flush contract.

Every state-changing call marks the entry dirty and makes sure one drain task
is running for that conversation. The drain task yields at least one loop tick
(so a burst of deltas arriving in the same tick becomes a single render pass),
honours the configured minimum interval between passes, and keeps looping
while new changes arrived during the awaited flush. Only one flush is ever in
flight per conversation; changes made meanwhile are folded into the next pass.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from chatrelay.observability.logging import get_logger
from chatrelay.streaming.timeline import Timeline, ToolState

logger = get_logger(__name__)

__all__ = ["TurnStatus", "BufferEntry", "PendingOutput", "RenderBuffer", "FlushCallback"]


class TurnStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self is not TurnStatus.RUNNING


@dataclass
class PendingOutput:
    text: str = ""
    reasoning: str = ""

    def __bool__(self) -> bool:
        return bool(self.text or self.reasoning)


@dataclass
class BufferEntry:
    """Live-turn state of one conversation."""

    conversation_key: str
    chat_id: str
    session_id: str
    user_artifact_id: Optional[str] = None
    assistant_message_id: str = ""
    status: TurnStatus = TurnStatus.RUNNING
    pending_text: list[str] = field(default_factory=list)
    pending_reasoning: list[str] = field(default_factory=list)
    text: str = ""
    reasoning: str = ""
    final_text: Optional[str] = None
    final_reasoning: Optional[str] = None
    tools: dict[str, ToolState] = field(default_factory=dict)
    artifact_ids: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    last_flush_at: float = 0.0
    dirty: bool = False
    urgent: bool = False
    closed: bool = False
    flush_task: Optional[asyncio.Task[None]] = field(default=None, repr=False)
    timeline: Optional[Timeline] = field(default=None, repr=False)

    @property
    def has_pending(self) -> bool:
        return bool(self.pending_text or self.pending_reasoning)


FlushCallback = Callable[[BufferEntry], Awaitable[None]]


class RenderBuffer:
    """Keyed store of buffer entries and their flush scheduling."""

    def __init__(
        self,
        on_flush: FlushCallback | None = None,
        *,
        min_interval_seconds: float = 0.0,
    ) -> None:
        self._entries: dict[str, BufferEntry] = {}
        self._retiring: list[BufferEntry] = []
        self._on_flush = on_flush
        self.min_interval_seconds = max(0.0, min_interval_seconds)

    def set_flush_callback(self, callback: FlushCallback) -> None:
        self._on_flush = callback

    def get_or_create(
        self,
        conversation_key: str,
        chat_id: str,
        session_id: str,
        user_artifact_id: str | None = None,
    ) -> BufferEntry:
        entry = self._entries.get(conversation_key)
        if entry is None or entry.closed:
            entry = BufferEntry(
                conversation_key=conversation_key,
                chat_id=chat_id,
                session_id=session_id,
                user_artifact_id=user_artifact_id,
            )
            self._entries[conversation_key] = entry
        return entry

    def get(self, conversation_key: str) -> BufferEntry | None:
        return self._entries.get(conversation_key)

    def keys(self) -> list[str]:
        return list(self._entries)

    def append_text(self, conversation_key: str, text: str) -> None:
        entry = self._entries.get(conversation_key)
        if entry is None or not text:
            return
        entry.pending_text.append(text)
        self._schedule(entry)

    def append_reasoning(self, conversation_key: str, text: str) -> None:
        entry = self._entries.get(conversation_key)
        if entry is None or not text:
            return
        entry.pending_reasoning.append(text)
        self._schedule(entry)

    def set_tools(self, conversation_key: str, tools: dict[str, ToolState]) -> None:
        entry = self._entries.get(conversation_key)
        if entry is None:
            return
        entry.tools.update(tools)
        self._schedule(entry)

    def set_status(self, conversation_key: str, status: TurnStatus) -> None:
        entry = self._entries.get(conversation_key)
        if entry is None or entry.status == status:
            return
        if entry.status.is_terminal:
            logger.debug(
                "status_change_ignored",
                conversation_key=conversation_key,
                current=entry.status.value,
                requested=status.value,
            )
            return
        entry.status = status
        self._schedule(entry, urgent=status.is_terminal)

    def set_final_output(
        self,
        conversation_key: str,
        text: str | None = None,
        reasoning: str | None = None,
    ) -> None:
        entry = self._entries.get(conversation_key)
        if entry is None:
            return
        if text is not None:
            entry.final_text = text
        if reasoning is not None:
            entry.final_reasoning = reasoning

    def touch(self, conversation_key: str, *, urgent: bool = False) -> None:
        """Force a render pass even though no text changed."""
        entry = self._entries.get(conversation_key)
        if entry is None:
            return
        self._schedule(entry, urgent=urgent)

    def get_and_clear_pending(self, conversation_key: str) -> PendingOutput:
        entry = self._entries.get(conversation_key)
        if entry is None:
            return PendingOutput()
        pending = PendingOutput("".join(entry.pending_text), "".join(entry.pending_reasoning))
        entry.pending_text.clear()
        entry.pending_reasoning.clear()
        entry.text += pending.text
        entry.reasoning += pending.reasoning
        return pending

    def set_artifact_ids(self, conversation_key: str, ids: list[str]) -> None:
        entry = self._entries.get(conversation_key)
        if entry is not None:
            entry.artifact_ids = list(ids)

    def _schedule(self, entry: BufferEntry, *, urgent: bool = False) -> None:
        entry.dirty = True
        entry.urgent = entry.urgent or urgent
        if self._on_flush is None or entry.flush_task is not None:
            return
        entry.flush_task = asyncio.get_running_loop().create_task(self._drain(entry))

    def _delay_for(self, entry: BufferEntry) -> float:
        if entry.urgent or not self.min_interval_seconds or not entry.last_flush_at:
            return 0.0
        elapsed = time.monotonic() - entry.last_flush_at
        return max(0.0, self.min_interval_seconds - elapsed)

    async def _drain(self, entry: BufferEntry) -> None:
        try:
            while entry.dirty and not entry.closed:
                await asyncio.sleep(self._delay_for(entry))
                entry.dirty = False
                entry.urgent = False
                entry.last_flush_at = time.monotonic()
                assert self._on_flush is not None
                try:
                    await self._on_flush(entry)
                except Exception:
                    logger.exception(
                        "flush_failed",
                        conversation_key=entry.conversation_key,
                        session_id=entry.session_id,
                    )
        finally:
            entry.flush_task = None
            if any(e is entry for e in self._retiring):
                entry.closed = True
                self._retiring = [e for e in self._retiring if e is not entry]

    async def wait_idle(self, conversation_key: str) -> None:
        """Wait until no flush is scheduled or running for the conversation, retired turns included."""
        while True:
            tasks = {
                e.flush_task
                for e in self._retiring
                if e.conversation_key == conversation_key and e.flush_task is not None
            }
            entry = self._entries.get(conversation_key)
            if entry is not None and entry.flush_task is not None:
                tasks.add(entry.flush_task)
            if not tasks:
                return
            await asyncio.wait(tasks)

    def retire(self, conversation_key: str) -> BufferEntry | None:
        """Detach the live entry so a new turn can take the conversation over.

        A flush already in flight is left to finish. An entry that has cards on
        screen, or a flush pending, gets one last pass rendering it as stopped
        (or with its own terminal status); anything else is closed right away.
        """
        entry = self._entries.pop(conversation_key, None)
        if entry is None or entry.closed:
            return entry
        if self._on_flush is None or (not entry.artifact_ids and entry.flush_task is None):
            entry.closed = True
            return entry
        if not entry.status.is_terminal:
            entry.status = TurnStatus.ABORTED
        self._retiring.append(entry)
        self._schedule(entry, urgent=True)
        return entry

    def drop(self, conversation_key: str) -> None:
        entry = self._entries.get(conversation_key)
        if entry is None:
            return
        entry.closed = True
        if entry.flush_task is not None and entry.flush_task is not _current_task():
            entry.flush_task.cancel()
        self._entries.pop(conversation_key, None)

    def clear(self) -> None:
        for key in list(self._entries):
            self.drop(key)


def _current_task() -> asyncio.Task[None] | None:
    try:
        return asyncio.current_task()  # type: ignore[return-value]
    except RuntimeError:
        return None
