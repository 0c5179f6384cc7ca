"""Per-conversation FIFO queue of outstanding tool-permission requests."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from chatrelay.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "PendingPermission",
    "PermissionQueue",
    "ResolveOutcome",
    "normalize_tool_name",
    "parse_permission_reply",
    "permission_response",
]

_ALLOW_WORDS = frozenset({"allow", "y", "yes", "ok", "允许", "同意"})
_ALWAYS_WORDS = frozenset({"always", "始终允许", "总是允许"})
_DENY_WORDS = frozenset({"deny", "n", "no", "reject", "拒绝"})


class ResolveOutcome(str, Enum):
    RESOLVED = "resolved"
    STALE = "stale"
    FAILED = "failed"


@dataclass
class PendingPermission:
    session_id: str
    permission_id: str
    tool: str
    description: str
    risk: Optional[str] = None
    enqueued_at: float = field(default_factory=time.monotonic)


def normalize_tool_name(tool: Any) -> str | None:
    """Return a trimmed tool name from a string or ``{"name": ...}`` payload."""
    if isinstance(tool, str):
        return tool.strip() or None
    if isinstance(tool, dict):
        name = tool.get("name")
        if isinstance(name, str):
            return name.strip() or None
    return None


def permission_response(allow: bool, remember: bool = False) -> str:
    """Map an allow/deny decision to the runtime's response keyword."""
    if not allow:
        return "reject"
    return "always" if remember else "once"


def parse_permission_reply(text: str) -> tuple[bool, bool] | None:
    """Read a chat reply as ``(allow, remember)``; None when it is not a decision."""
    word = text.strip().lower()
    if word in _ALWAYS_WORDS:
        return True, True
    if word in _ALLOW_WORDS:
        return True, False
    if word in _DENY_WORDS:
        return False, False
    return None


class PermissionQueue:
    """FIFO of pending permissions keyed by conversation.

    Enqueueing an already-known ``permission_id`` replaces the entry in place.
    Expired entries are pruned lazily on every access.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        *,
        whitelist: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._whitelist = {t.strip().lower() for t in whitelist if t.strip()}
        self._clock = clock
        self._queues: dict[str, list[PendingPermission]] = {}

    def is_tool_whitelisted(self, tool: Any) -> bool:
        name = normalize_tool_name(tool)
        return bool(name) and name.lower() in self._whitelist  # type: ignore[union-attr]

    def _prune(self, conversation_key: str) -> list[PendingPermission]:
        queue = self._queues.get(conversation_key)
        if not queue:
            self._queues.pop(conversation_key, None)
            return []
        now = self._clock()
        remained = [p for p in queue if now - p.enqueued_at <= self.ttl_seconds]
        if len(remained) != len(queue):
            logger.info(
                "permission_expired",
                conversation_key=conversation_key,
                dropped=len(queue) - len(remained),
            )
        if remained:
            self._queues[conversation_key] = remained
        else:
            self._queues.pop(conversation_key, None)
        return remained

    def enqueue(self, conversation_key: str, request: PendingPermission) -> PendingPermission:
        request.enqueued_at = self._clock()
        queue = self._queues.setdefault(conversation_key, [])
        for index, existing in enumerate(queue):
            if existing.permission_id == request.permission_id:
                queue[index] = request
                break
        else:
            queue.append(request)
        self._prune(conversation_key)
        return request

    def peek(self, conversation_key: str) -> PendingPermission | None:
        queue = self._prune(conversation_key)
        return queue[0] if queue else None

    def size(self, conversation_key: str) -> int:
        return len(self._prune(conversation_key))

    def take(self, conversation_key: str, permission_id: str) -> tuple[int, PendingPermission] | None:
        """Remove the request with ``permission_id`` and return it with its queue index."""
        queue = self._prune(conversation_key)
        for index, existing in enumerate(queue):
            if existing.permission_id == permission_id:
                removed = queue.pop(index)
                if not queue:
                    self._queues.pop(conversation_key, None)
                return index, removed
        return None

    def resolve(self, conversation_key: str, permission_id: str) -> PendingPermission | None:
        """Remove and return the request with ``permission_id``; None when unknown or expired."""
        taken = self.take(conversation_key, permission_id)
        return taken[1] if taken else None

    def restore(self, conversation_key: str, request: PendingPermission, index: int) -> None:
        """Put a taken request back at ``index`` with its original ``enqueued_at``.

        A re-announcement that arrived in between wins and the request is not restored.
        """
        queue = self._queues.setdefault(conversation_key, [])
        if any(p.permission_id == request.permission_id for p in queue):
            return
        queue.insert(min(max(index, 0), len(queue)), request)
        self._prune(conversation_key)

    def drop(self, conversation_key: str) -> None:
        self._queues.pop(conversation_key, None)
