"""Prometheus counters for the renderer core."""

from __future__ import annotations

from prometheus_client import Counter

RENDER_PASSES = Counter(
    "chatrelay_render_passes_total",
    "Render passes per outcome",
    ["outcome"],
)
SINK_OPERATIONS = Counter(
    "chatrelay_render_sink_operations_total",
    "Render sink calls",
    ["op", "result"],
)
UNDO_RUNS = Counter(
    "chatrelay_undo_runs_total",
    "Undo requests per result",
    ["result"],
)
ERROR_NOTES = Counter(
    "chatrelay_error_notes_total",
    "Runtime error notes appended to a timeline",
    ["category"],
)

__all__ = ["RENDER_PASSES", "SINK_OPERATIONS", "UNDO_RUNS", "ERROR_NOTES"]
