"""Single-level undo with question-flow cascade.

One undo pops the latest exchange, rolls the runtime back to just before the
paired user input and deletes the exchange's artifacts. Popping a
``question_answer`` keeps popping the ``question_prompt`` entries beneath it;
their artifacts are deleted but the runtime is rolled back only once.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Sequence

from chatrelay.backends.protocols import RenderSink, RuntimeControl, RuntimeMessage
from chatrelay.errors import RuntimeControlError
from chatrelay.interactions.ledger import Interaction, InteractionKind, InteractionLedger
from chatrelay.observability.logging import get_logger
from chatrelay.observability.metrics import SINK_OPERATIONS, UNDO_RUNS
from chatrelay.resilience.retry import AsyncRetryConfig, async_with_retry
from chatrelay.streaming.cards import build_notice_card

logger = get_logger(__name__)

__all__ = ["UndoEngine", "UndoResult", "resolve_rollback_target"]


@dataclass
class UndoResult:
    ok: bool
    message: str
    removed: list[Interaction] = field(default_factory=list)
    rolled_back: bool = False
    notice_artifact_id: Optional[str] = None


def resolve_rollback_target(
    messages: Sequence[RuntimeMessage], assistant_message_id: str
) -> str | None:
    """Pick the runtime message to revert to for an exchange.

    The user message right before the recorded assistant message is the
    target. Unknown ids fall back to the second-to-last message.
    """
    if not messages:
        return None
    if assistant_message_id:
        for index, message in enumerate(messages):
            if message.id != assistant_message_id:
                continue
            for earlier in reversed(messages[:index]):
                if earlier.role == "user":
                    return earlier.id
            return messages[index - 1].id if index > 0 else message.id
    if len(messages) >= 2:
        return messages[-2].id
    return messages[0].id


class UndoEngine:
    def __init__(
        self,
        ledger: InteractionLedger,
        runtime: RuntimeControl,
        sink: RenderSink,
        *,
        notice_seconds: float = 3.0,
        retry: AsyncRetryConfig | None = None,
    ) -> None:
        self.ledger = ledger
        self.runtime = runtime
        self.sink = sink
        self.notice_seconds = notice_seconds
        self.retry = retry or AsyncRetryConfig(
            attempts=2, backoff_seconds=0.2, retry_on=(RuntimeControlError, OSError)
        )
        self._background: set[asyncio.Task[None]] = set()

    async def perform_undo(
        self,
        conversation_key: str,
        session_id: str,
        chat_id: str,
        trigger_artifact_id: str | None = None,
    ) -> UndoResult:
        entry = self.ledger.pop_interaction(conversation_key)
        if entry is None:
            UNDO_RUNS.labels(result="empty").inc()
            result = UndoResult(ok=False, message="Nothing to undo.")
            await self._finish(chat_id, result, trigger_artifact_id)
            return result

        removed = [entry]
        rolled_back = await self._rollback(session_id, entry)
        await self._delete_artifacts(entry)

        if entry.kind == InteractionKind.QUESTION_ANSWER:
            while True:
                top = self.ledger.peek_last(conversation_key)
                if top is None or top.kind != InteractionKind.QUESTION_PROMPT:
                    break
                self.ledger.pop_interaction(conversation_key)
                removed.append(top)
                await self._delete_artifacts(top)

        if rolled_back:
            message = "Undid the last exchange."
        else:
            message = "Removed the last exchange from the chat, but the assistant history was not rolled back."
        UNDO_RUNS.labels(result="ok" if rolled_back else "partial").inc()
        logger.info(
            "undo_performed",
            conversation_key=conversation_key,
            session_id=session_id,
            removed=len(removed),
            rolled_back=rolled_back,
        )
        result = UndoResult(ok=True, message=message, removed=removed, rolled_back=rolled_back)
        await self._finish(chat_id, result, trigger_artifact_id)
        return result

    async def _rollback(self, session_id: str, entry: Interaction) -> bool:
        try:
            messages = await async_with_retry(
                lambda: self.runtime.list_messages(session_id),
                self.retry,
                operation="list_messages",
            )
        except Exception as exc:
            logger.warning("undo_history_lookup_failed", session_id=session_id, error=str(exc))
            return False

        target = resolve_rollback_target(messages, entry.assistant_message_id)
        if target is None:
            logger.warning("undo_target_missing", session_id=session_id)
            return False

        try:
            ok = bool(await self.runtime.rollback(session_id, target))
        except Exception as exc:
            logger.warning("undo_rollback_failed", session_id=session_id, error=str(exc))
            return False
        if not ok:
            logger.warning("undo_rollback_rejected", session_id=session_id, target=target)
        return ok

    async def _delete(self, artifact_id: str) -> None:
        try:
            await self.sink.delete_artifact(artifact_id)
            SINK_OPERATIONS.labels(op="delete", result="ok").inc()
        except Exception as exc:
            # already deleted or not ours
            logger.debug("undo_delete_ignored", artifact_id=artifact_id, error=str(exc))
            SINK_OPERATIONS.labels(op="delete", result="error").inc()

    async def _delete_artifacts(self, entry: Interaction) -> None:
        for artifact_id in entry.bot_artifact_ids:
            await self._delete(artifact_id)
        if entry.user_artifact_id:
            await self._delete(entry.user_artifact_id)

    async def _finish(
        self, chat_id: str, result: UndoResult, trigger_artifact_id: str | None
    ) -> None:
        if trigger_artifact_id:
            await self._delete(trigger_artifact_id)

        template = "green" if result.ok and result.rolled_back else "orange"
        try:
            notice_id = await self.sink.send_artifact(chat_id, build_notice_card(result.message, template))
        except Exception as exc:
            logger.warning("undo_notice_failed", chat_id=chat_id, error=str(exc))
            notice_id = None
        result.notice_artifact_id = notice_id

        if notice_id and self.notice_seconds > 0:
            task = asyncio.get_running_loop().create_task(self._expire_notice(notice_id))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _expire_notice(self, artifact_id: str) -> None:
        await asyncio.sleep(self.notice_seconds)
        await self._delete(artifact_id)

    async def wait_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
