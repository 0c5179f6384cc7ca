"""Streaming pipeline: delta reconciliation, timeline, render buffer and cards."""

from chatrelay.streaming.buffer import BufferEntry, RenderBuffer, TurnStatus
from chatrelay.streaming.reconciler import DeltaReconciler
from chatrelay.streaming.timeline import Segment, SegmentKind, Timeline, TimelineStore, ToolState, ToolStatus

__all__ = [
    "BufferEntry",
    "DeltaReconciler",
    "RenderBuffer",
    "Segment",
    "SegmentKind",
    "Timeline",
    "TimelineStore",
    "ToolState",
    "ToolStatus",
    "TurnStatus",
]
