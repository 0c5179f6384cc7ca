"""Ordered, keyed rendering timeline per conversation."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from chatrelay.errors import SegmentKindError
from chatrelay.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "SegmentKind",
    "ToolStatus",
    "ToolState",
    "Segment",
    "Timeline",
    "TimelineStore",
    "merge_tool_output",
    "clip_tool_output",
]

TOOL_OUTPUT_SEPARATOR = "\n\n"
_CLIP_MARKER = re.compile(r"^\.\.\.\[(\d+) chars truncated\]\n")


class SegmentKind(str, Enum):
    TEXT = "text"
    REASONING = "reasoning"
    TOOL = "tool"
    NOTE = "note"


class ToolStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolStatus.COMPLETED, ToolStatus.FAILED)


@dataclass
class ToolState:
    """Observed state of one tool call or sub-task."""

    name: str
    status: ToolStatus = ToolStatus.PENDING
    output: str = ""
    subtask: bool = False


@dataclass
class Segment:
    """One renderable timeline entry.

    For tool segments ``content`` holds the tool name and ``variant`` is
    ``"tool"`` or ``"subtask"``; for notes ``variant`` is the note flavour
    (retry, compaction, question, error, permission).
    """

    key: str
    kind: SegmentKind
    content: str = ""
    tool_status: Optional[ToolStatus] = None
    tool_output: Optional[str] = None
    variant: Optional[str] = None

    @property
    def is_visible(self) -> bool:
        if self.kind in (SegmentKind.TEXT, SegmentKind.REASONING, SegmentKind.NOTE):
            return bool(self.content.strip())
        return True


def _split_clip_marker(text: str) -> tuple[int, str]:
    match = _CLIP_MARKER.match(text)
    if not match:
        return 0, text
    return int(match.group(1)), text[match.end() :]


def clip_tool_output(output: str, max_chars: int) -> str:
    """Keep the tail of ``output``, annotating how much was dropped from the head."""
    dropped, body = _split_clip_marker(output)
    if len(body) <= max_chars:
        return output
    cut = len(body) - max_chars
    return f"...[{dropped + cut} chars truncated]\n{body[cut:]}"


def merge_tool_output(existing: str, incoming: str) -> str:
    """Merge a later tool output observation without regressing what was shown.

    Incoming text already contained in the stored output is discarded; stored
    output contained in the incoming text is replaced; otherwise the two are
    treated as separate observations and joined.
    """
    if not incoming:
        return existing
    if not existing:
        return incoming

    _, body = _split_clip_marker(existing)
    if incoming in body:
        return existing
    if body in incoming:
        return incoming
    return f"{existing}{TOOL_OUTPUT_SEPARATOR}{incoming}"


class Timeline:
    """Insertion-ordered segments of one conversation with bounded retention."""

    def __init__(self, max_segments: int = 80, tool_output_max_chars: int = 4000) -> None:
        self.max_segments = max_segments
        self.tool_output_max_chars = tool_output_max_chars
        self._order: list[str] = []
        self._segments: dict[str, Segment] = {}
        self._active_key: str | None = None

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, key: object) -> bool:
        return key in self._segments

    def get(self, key: str) -> Segment | None:
        return self._segments.get(key)

    def _ensure(self, key: str, kind: SegmentKind) -> Segment:
        segment = self._segments.get(key)
        if segment is None:
            segment = Segment(key=key, kind=kind)
            self._segments[key] = segment
            self._order.append(key)
        elif segment.kind != kind:
            raise SegmentKindError(
                f"Segment {key!r} is {segment.kind.value}, cannot reuse it as {kind.value}"
            )
        self._active_key = key
        self._evict()
        return segment

    def upsert_text(self, key: str, kind: SegmentKind, full_text: str) -> Segment:
        segment = self._ensure(key, kind)
        segment.content = full_text
        return segment

    def append_text(self, key: str, kind: SegmentKind, delta_text: str) -> Segment:
        segment = self._ensure(key, kind)
        segment.content += delta_text
        return segment

    def upsert_tool(self, key: str, state: ToolState) -> Segment:
        segment = self._ensure(key, SegmentKind.TOOL)
        if state.name:
            segment.content = state.name
        segment.variant = "subtask" if state.subtask else "tool"

        current = segment.tool_status
        if current is None or not (current.is_terminal and not state.status.is_terminal):
            segment.tool_status = state.status

        merged = merge_tool_output(segment.tool_output or "", state.output)
        segment.tool_output = clip_tool_output(merged, self.tool_output_max_chars)
        return segment

    def upsert_note(self, key: str, text: str, variant: str) -> Segment:
        segment = self._ensure(key, SegmentKind.NOTE)
        segment.content = text
        segment.variant = variant
        return segment

    def replace_kind_text(self, kind: SegmentKind, text: str) -> None:
        """Make ``text`` the only visible content of ``kind``.

        The last segment of that kind receives the text, earlier ones are blanked
        (and therefore filtered from snapshots).
        """
        keys = [k for k in self._order if self._segments[k].kind == kind]
        if not keys:
            if text:
                self.upsert_text(f"{kind.value}:final", kind, text)
            return
        for key in keys[:-1]:
            self._segments[key].content = ""
        self._segments[keys[-1]].content = text

    def snapshot(self) -> list[Segment]:
        """Visible segments in insertion order (copies)."""
        return [replace(self._segments[k]) for k in self._order if self._segments[k].is_visible]

    def tool_states(self) -> dict[str, ToolState]:
        states: dict[str, ToolState] = {}
        for key in self._order:
            segment = self._segments[key]
            if segment.kind == SegmentKind.TOOL:
                states[key] = ToolState(
                    name=segment.content,
                    status=segment.tool_status or ToolStatus.PENDING,
                    output=segment.tool_output or "",
                    subtask=segment.variant == "subtask",
                )
        return states

    def _evict(self) -> None:
        overflow = len(self._order) - self.max_segments
        if overflow <= 0:
            return

        # Blank segments go first, then the oldest; never the one being mutated.
        candidates = [
            k for k in self._order if k != self._active_key and not self._segments[k].is_visible
        ]
        candidates += [
            k for k in self._order if k != self._active_key and k not in candidates
        ]
        for key in candidates[:overflow]:
            self._order.remove(key)
            del self._segments[key]
        logger.debug("timeline_evicted", count=min(overflow, len(candidates)))


class TimelineStore:
    """Keyed store of timelines, one per conversation."""

    def __init__(self, max_segments: int = 80, tool_output_max_chars: int = 4000) -> None:
        self.max_segments = max_segments
        self.tool_output_max_chars = tool_output_max_chars
        self._timelines: dict[str, Timeline] = {}

    def get_or_create(self, conversation_key: str) -> Timeline:
        timeline = self._timelines.get(conversation_key)
        if timeline is None:
            timeline = Timeline(self.max_segments, self.tool_output_max_chars)
            self._timelines[conversation_key] = timeline
        return timeline

    def get(self, conversation_key: str) -> Timeline | None:
        return self._timelines.get(conversation_key)

    def reset(self, conversation_key: str) -> Timeline:
        timeline = Timeline(self.max_segments, self.tool_output_max_chars)
        self._timelines[conversation_key] = timeline
        return timeline

    def drop(self, conversation_key: str) -> None:
        self._timelines.pop(conversation_key, None)
