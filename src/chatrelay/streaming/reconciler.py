"""Delta reconciliation for streamed text fragments.

The runtime may deliver a fragment either as progressive deltas or as re-sent
full snapshots, without saying which. For fragments with a stable part id we
keep the last payload seen and turn every new payload into the text that has
to be appended:

- new payload extends the stored one: append the suffix
- new payload equals the stored one, or is a stale prefix of it: nothing
- anything else: the fragment was replaced, append the whole payload

Anonymous fragments (no part id) are always appended as-is.
"""

from __future__ import annotations

from chatrelay.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = ["DeltaReconciler"]


class DeltaReconciler:
    """Keeps the last-seen snapshot per (session, part) and emits append text."""

    def __init__(self) -> None:
        self._snapshots: dict[str, dict[str, str]] = {}

    def apply(self, session_id: str, part_id: str | None, kind: str, payload: str) -> str:
        """Return the text to append for ``payload``; empty string means no-op."""
        if not payload:
            return ""
        if not part_id:
            return payload

        parts = self._snapshots.setdefault(session_id, {})
        stored = parts.get(part_id, "")

        if payload == stored:
            return ""
        if payload.startswith(stored):
            parts[part_id] = payload
            return payload[len(stored) :]
        if stored.startswith(payload):
            # Replayed older snapshot; keep the longer one.
            logger.debug(
                "delta_stale_snapshot",
                session_id=session_id,
                part_id=part_id,
                kind=kind,
            )
            return ""

        parts[part_id] = payload
        return payload

    def snapshot(self, session_id: str, part_id: str) -> str:
        return self._snapshots.get(session_id, {}).get(part_id, "")

    def purge(self, session_id: str) -> None:
        """Forget all snapshots of a session (called when its turn ends)."""
        self._snapshots.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._snapshots
