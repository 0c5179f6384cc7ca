"""Per-conversation log of exchanges, used for undo."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from chatrelay.errors import InvalidInteractionError
from chatrelay.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = ["Interaction", "InteractionKind", "InteractionLedger"]


class InteractionKind(str, Enum):
    NORMAL = "normal"
    QUESTION_PROMPT = "question_prompt"
    QUESTION_ANSWER = "question_answer"


@dataclass
class Interaction:
    """One exchange: the user's input and the artifacts the bot produced for it.

    ``assistant_message_id`` is empty for exchanges that never reached the
    runtime as their own message (question prompts and answers).
    """

    bot_artifact_ids: list[str]
    user_artifact_id: Optional[str] = None
    assistant_message_id: str = ""
    kind: InteractionKind = InteractionKind.NORMAL
    rendered_snapshot: str = ""
    timestamp: float = field(default_factory=time.time)

    def owns_any(self, artifact_ids: set[str]) -> bool:
        return bool(artifact_ids.intersection(self.bot_artifact_ids))


class InteractionLedger:
    def __init__(self, max_entries: int = 50) -> None:
        self.max_entries = max_entries
        self._entries: dict[str, list[Interaction]] = {}

    def add_interaction(self, conversation_key: str, entry: Interaction) -> Interaction:
        """Record an exchange, keeping entries ordered by ``timestamp``.

        An exchange recorded late (a replaced turn whose first card landed after
        the next turn's) is slotted in before the newer entries.
        """
        if not entry.bot_artifact_ids:
            raise InvalidInteractionError("An interaction needs at least one bot artifact id")
        entries = self._entries.setdefault(conversation_key, [])
        index = len(entries)
        while index and entries[index - 1].timestamp > entry.timestamp:
            index -= 1
        entries.insert(index, entry)
        if len(entries) > self.max_entries:
            del entries[: len(entries) - self.max_entries]
        logger.debug(
            "interaction_added",
            conversation_key=conversation_key,
            kind=entry.kind.value,
            artifacts=len(entry.bot_artifact_ids),
        )
        return entry

    def update_interaction(
        self,
        conversation_key: str,
        predicate: Callable[[Interaction], bool],
        mutator: Callable[[Interaction], None],
    ) -> Interaction | None:
        """Apply ``mutator`` to the most recent entry matching ``predicate``."""
        for entry in reversed(self._entries.get(conversation_key, [])):
            if predicate(entry):
                mutator(entry)
                if not entry.bot_artifact_ids:
                    raise InvalidInteractionError("An interaction needs at least one bot artifact id")
                return entry
        return None

    def pop_interaction(self, conversation_key: str) -> Interaction | None:
        entries = self._entries.get(conversation_key)
        if not entries:
            return None
        entry = entries.pop()
        if not entries:
            del self._entries[conversation_key]
        return entry

    def peek_last(self, conversation_key: str) -> Interaction | None:
        entries = self._entries.get(conversation_key)
        return entries[-1] if entries else None

    def entries(self, conversation_key: str) -> list[Interaction]:
        return list(self._entries.get(conversation_key, []))

    def size(self, conversation_key: str) -> int:
        return len(self._entries.get(conversation_key, []))

    def drop(self, conversation_key: str) -> None:
        self._entries.pop(conversation_key, None)
