"""Pending-question state machine, one outstanding question set per session.

States: awaiting the answer to the current question, then either the next
question (cursor advanced), ``submitted`` after the last one, or ``rejected``.
Submitted and rejected states destroy the pending entry.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from chatrelay.backends.protocols import RuntimeControl
from chatrelay.coordinators.answers import parse_answer_text
from chatrelay.events import QuestionAskedEvent, QuestionInfo, QuestionOption
from chatrelay.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = ["PendingQuestion", "QuestionCoordinator", "QuestionOutcome", "QuestionResult"]


class QuestionOutcome(str, Enum):
    ADVANCED = "advanced"
    SUBMITTED = "submitted"
    REJECTED = "rejected"
    UPDATED = "updated"
    INVALID = "invalid"
    STALE = "stale"
    FAILED = "failed"


@dataclass
class PendingQuestion:
    request_id: str
    session_id: str
    conversation_key: str
    chat_id: str
    questions: list[QuestionInfo]
    draft_answers: list[list[str]] = field(default_factory=list)
    draft_custom_answers: list[str] = field(default_factory=list)
    current_index: int = 0
    option_pages: list[int] = field(default_factory=list)
    prompt_artifact_ids: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        count = len(self.questions)
        self.draft_answers = self.draft_answers or [[] for _ in range(count)]
        self.draft_custom_answers = self.draft_custom_answers or ["" for _ in range(count)]
        self.option_pages = self.option_pages or [0 for _ in range(count)]

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def current(self) -> QuestionInfo:
        return self.questions[self.current_index]

    @property
    def is_last(self) -> bool:
        return self.current_index >= self.total - 1

    def answers(self) -> list[list[str]]:
        """Per-question answers; a custom answer wins over selected options."""
        out: list[list[str]] = []
        for index in range(self.total):
            custom = self.draft_custom_answers[index].strip()
            out.append([custom] if custom else list(self.draft_answers[index]))
        return out

    def options_page(self, page_size: int, index: int | None = None) -> tuple[list[QuestionOption], int, int]:
        """Return (options on the current page, page index, page count)."""
        qi = self.current_index if index is None else index
        options = self.questions[qi].options
        pages = max(1, math.ceil(len(options) / page_size))
        page = min(self.option_pages[qi], pages - 1)
        start = page * page_size
        return options[start : start + page_size], page, pages


@dataclass
class QuestionResult:
    outcome: QuestionOutcome
    pending: Optional[PendingQuestion] = None
    answers: list[list[str]] = field(default_factory=list)


class QuestionCoordinator:
    """Tracks pending questions and drives their answer/submit/reject flow."""

    def __init__(
        self,
        runtime: RuntimeControl,
        *,
        ttl_seconds: float = 1800.0,
        option_page_size: int = 20,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._runtime = runtime
        self.ttl_seconds = ttl_seconds
        self.option_page_size = option_page_size
        self._clock = clock
        self._pending: dict[str, PendingQuestion] = {}
        self._by_session: dict[str, str] = {}

    def __len__(self) -> int:
        self._prune()
        return len(self._pending)

    def _prune(self) -> None:
        now = self._clock()
        expired = [
            rid for rid, p in self._pending.items() if now - p.created_at > self.ttl_seconds
        ]
        for request_id in expired:
            logger.info("question_expired", request_id=request_id)
            self._remove(request_id)

    def _remove(self, request_id: str) -> PendingQuestion | None:
        pending = self._pending.pop(request_id, None)
        if pending is not None and self._by_session.get(pending.session_id) == request_id:
            del self._by_session[pending.session_id]
        return pending

    def register(
        self, event: QuestionAskedEvent, conversation_key: str, chat_id: str
    ) -> PendingQuestion:
        previous = self._by_session.get(event.session_id)
        if previous and previous != event.id:
            logger.info("question_replaced", previous=previous, request_id=event.id)
            self._remove(previous)

        pending = PendingQuestion(
            request_id=event.id,
            session_id=event.session_id,
            conversation_key=conversation_key,
            chat_id=chat_id,
            questions=list(event.questions),
            created_at=self._clock(),
        )
        self._pending[event.id] = pending
        self._by_session[event.session_id] = event.id
        logger.info(
            "question_registered",
            request_id=event.id,
            session_id=event.session_id,
            questions=pending.total,
        )
        return pending

    def get(self, request_id: str) -> PendingQuestion | None:
        self._prune()
        return self._pending.get(request_id)

    def get_by_session(self, session_id: str) -> PendingQuestion | None:
        self._prune()
        request_id = self._by_session.get(session_id)
        return self._pending.get(request_id) if request_id else None

    def get_by_conversation(self, conversation_key: str) -> PendingQuestion | None:
        self._prune()
        for pending in self._pending.values():
            if pending.conversation_key == conversation_key:
                return pending
        return None

    def _lookup(self, request_id: str, question_index: int | None) -> PendingQuestion | None:
        pending = self.get(request_id)
        if pending is None:
            return None
        if question_index is not None and question_index != pending.current_index:
            return None
        return pending

    def set_draft_answer(self, request_id: str, question_index: int, values: list[str]) -> bool:
        pending = self.get(request_id)
        if pending is None or not 0 <= question_index < pending.total:
            return False
        pending.draft_answers[question_index] = list(values)
        pending.draft_custom_answers[question_index] = ""
        return True

    def set_custom_answer(self, request_id: str, question_index: int, text: str) -> bool:
        pending = self.get(request_id)
        if pending is None or not 0 <= question_index < pending.total:
            return False
        pending.draft_custom_answers[question_index] = text
        pending.draft_answers[question_index] = []
        return True

    def set_option_page(self, request_id: str, question_index: int, page: int) -> bool:
        pending = self.get(request_id)
        if pending is None or not 0 <= question_index < pending.total or page < 0:
            return False
        _, _, pages = pending.options_page(self.option_page_size, question_index)
        pending.option_pages[question_index] = min(page, pages - 1)
        return True

    async def answer(
        self, request_id: str, text: str, question_index: int | None = None
    ) -> QuestionResult:
        """Apply a free-text reply to the current question."""
        pending = self._lookup(request_id, question_index)
        if pending is None:
            return QuestionResult(QuestionOutcome.STALE)

        parsed = parse_answer_text(text, pending.current)
        if parsed is None:
            return QuestionResult(QuestionOutcome.INVALID, pending)
        if parsed.type == "skip":
            return await self.skip(request_id)
        if parsed.type == "custom":
            self.set_custom_answer(request_id, pending.current_index, parsed.custom or "")
        else:
            self.set_draft_answer(request_id, pending.current_index, parsed.values)
        return await self._advance(pending)

    async def select(
        self, request_id: str, values: list[str], question_index: int | None = None
    ) -> QuestionResult:
        """Apply an option selection made on a card."""
        pending = self._lookup(request_id, question_index)
        if pending is None:
            return QuestionResult(QuestionOutcome.STALE)
        labels = {option.label for option in pending.current.options}
        chosen = [v for v in values if v in labels]
        if not chosen:
            return QuestionResult(QuestionOutcome.INVALID, pending)
        if not pending.current.multiple:
            chosen = chosen[:1]
        self.set_draft_answer(request_id, pending.current_index, chosen)
        return await self._advance(pending)

    async def skip(self, request_id: str, question_index: int | None = None) -> QuestionResult:
        pending = self._lookup(request_id, question_index)
        if pending is None:
            return QuestionResult(QuestionOutcome.STALE)
        pending.draft_answers[pending.current_index] = []
        pending.draft_custom_answers[pending.current_index] = ""
        return await self._advance(pending)

    async def reject(self, request_id: str) -> QuestionResult:
        pending = self.get(request_id)
        if pending is None:
            return QuestionResult(QuestionOutcome.STALE)
        self._remove(request_id)
        try:
            ok = await self._runtime.reject_question(request_id)
        except Exception as exc:
            logger.warning("question_reject_failed", request_id=request_id, error=str(exc))
            ok = False
        if not ok:
            logger.warning("question_reject_not_acknowledged", request_id=request_id)
        return QuestionResult(QuestionOutcome.REJECTED, pending)

    async def _advance(self, pending: PendingQuestion) -> QuestionResult:
        if not pending.is_last:
            pending.current_index += 1
            return QuestionResult(QuestionOutcome.ADVANCED, pending)
        return await self._submit(pending)

    async def _submit(self, pending: PendingQuestion) -> QuestionResult:
        answers = pending.answers()
        try:
            ok = await self._runtime.reply_question(pending.request_id, answers)
        except Exception as exc:
            logger.warning(
                "question_submit_failed", request_id=pending.request_id, error=str(exc)
            )
            ok = False
        if not ok:
            return QuestionResult(QuestionOutcome.FAILED, pending, answers)
        self._remove(pending.request_id)
        logger.info("question_submitted", request_id=pending.request_id)
        return QuestionResult(QuestionOutcome.SUBMITTED, pending, answers)

    def drop_session(self, session_id: str) -> None:
        request_id = self._by_session.get(session_id)
        if request_id:
            self._remove(request_id)
