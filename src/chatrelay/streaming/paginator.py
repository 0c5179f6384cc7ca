"""Splits a turn into bounded card artifacts and syncs them with the chat."""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Optional, Sequence

from chatrelay.backends.protocols import RenderSink
from chatrelay.coordinators.permissions import PendingPermission
from chatrelay.coordinators.questions import PendingQuestion
from chatrelay.observability.logging import get_logger
from chatrelay.observability.metrics import SINK_OPERATIONS
from chatrelay.streaming.buffer import TurnStatus
from chatrelay.streaming.cards import (
    CURSOR,
    NO_OUTPUT,
    Element,
    build_card,
    build_permission_block,
    build_question_block,
    build_segment_block,
    count_components,
    status_banner,
)
from chatrelay.streaming.timeline import Segment

logger = get_logger(__name__)

__all__ = ["CardPaginator", "MIN_COMPONENT_BUDGET"]

MIN_COMPONENT_BUDGET = 20
# header.title is one component on every page
_HEADER_COMPONENTS = 1


def _fit_block(block: Element, limit: int) -> Element:
    """Hard-truncate a block whose own components exceed one page."""
    if count_components(block) <= limit or "elements" not in block:
        return block
    fitted = copy.deepcopy(block)
    inner: list[Element] = fitted["elements"]
    marker = {"tag": "markdown", "content": "(truncated to fit the card)"}
    while inner and count_components(fitted) + 1 > limit:
        inner.pop()
    inner.append(marker)
    return fitted


def _hr() -> Element:
    return {"tag": "hr"}


class CardPaginator:
    """Renders timeline snapshots into cards and reconciles them with sent artifacts."""

    def __init__(self, component_budget: int = 180, *, option_page_size: int = 20) -> None:
        self.component_budget = max(component_budget, MIN_COMPONENT_BUDGET)
        self.option_page_size = option_page_size
        self._background: set[asyncio.Task[None]] = set()

    @property
    def body_budget(self) -> int:
        return max(1, self.component_budget - _HEADER_COMPONENTS)

    def render(
        self,
        segments: Sequence[Segment],
        status: TurnStatus,
        *,
        permission: Optional[PendingPermission] = None,
        pending_permissions: int = 1,
        question: Optional[PendingQuestion] = None,
    ) -> list[dict[str, Any]]:
        """Pack segments into pages; segments never straddle two pages.

        The first page opens with the actionable summaries (permission,
        question) so the status banner and everything that needs an answer
        live on one artifact.
        """
        limit = self.body_budget
        actionable: list[Element] = []
        if permission is not None:
            actionable.append(_fit_block(build_permission_block(permission, pending_permissions), limit))
        if question is not None:
            actionable.append(_fit_block(build_question_block(question, self.option_page_size), limit))

        blocks = [b for b in (build_segment_block(s) for s in segments) if b is not None]
        if status is TurnStatus.RUNNING:
            blocks.append({"tag": "markdown", "content": CURSOR})
        elif not blocks:
            blocks.append({"tag": "markdown", "content": NO_OUTPUT})

        pages: list[list[Element]] = []
        page: list[Element] = []
        used = 0
        for block in actionable + [_fit_block(b, limit) for b in blocks]:
            cost = count_components(block)
            if page and used + 1 + cost > limit:
                pages.append(page)
                page, used = [], 0
            if page:
                page.append(_hr())
                used += 1
            page.append(block)
            used += cost
        if page:
            pages.append(page)

        title, template = status_banner(status)
        if len(pages) == 1:
            return [build_card(title, template, pages[0])]
        return [
            build_card(f"{title} ({index}/{len(pages)})", template, elements)
            for index, elements in enumerate(pages, start=1)
        ]

    async def sync(
        self,
        chat_id: str,
        previous_ids: Sequence[str],
        documents: Sequence[dict[str, Any]],
        sink: RenderSink,
    ) -> list[str]:
        """Bring the chat in line with ``documents`` using the fewest sink calls.

        Returns the artifact ids now representing the turn, in page order.
        """
        previous = list(previous_ids)
        common = min(len(previous), len(documents))
        current: list[str] = []

        for index in range(common):
            old_id = previous[index]
            if await self._update(sink, old_id, documents[index]):
                current.append(old_id)
                continue
            new_id = await self._send(sink, chat_id, documents[index])
            if new_id:
                current.append(new_id)
                self._spawn_delete(sink, old_id)
            else:
                logger.warning("artifact_replace_failed", chat_id=chat_id, artifact_id=old_id)
                current.append(old_id)

        for document in documents[common:]:
            new_id = await self._send(sink, chat_id, document)
            if new_id:
                current.append(new_id)
            else:
                logger.warning("artifact_send_failed", chat_id=chat_id)

        for old_id in previous[common:]:
            await self._delete(sink, old_id)

        return current

    async def _update(self, sink: RenderSink, artifact_id: str, document: dict[str, Any]) -> bool:
        try:
            ok = bool(await sink.update_artifact(artifact_id, document))
        except Exception as exc:
            logger.warning("artifact_update_error", artifact_id=artifact_id, error=str(exc))
            ok = False
        SINK_OPERATIONS.labels(op="update", result="ok" if ok else "error").inc()
        return ok

    async def _send(self, sink: RenderSink, chat_id: str, document: dict[str, Any]) -> str | None:
        try:
            artifact_id = await sink.send_artifact(chat_id, document)
        except Exception as exc:
            logger.warning("artifact_send_error", chat_id=chat_id, error=str(exc))
            artifact_id = None
        SINK_OPERATIONS.labels(op="send", result="ok" if artifact_id else "error").inc()
        return artifact_id

    async def _delete(self, sink: RenderSink, artifact_id: str) -> None:
        try:
            await sink.delete_artifact(artifact_id)
        except Exception as exc:
            logger.debug("artifact_delete_ignored", artifact_id=artifact_id, error=str(exc))
            SINK_OPERATIONS.labels(op="delete", result="error").inc()
            return
        SINK_OPERATIONS.labels(op="delete", result="ok").inc()

    def _spawn_delete(self, sink: RenderSink, artifact_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._delete(sink, artifact_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_background(self) -> None:
        """Wait for stale-artifact deletions scheduled by ``sync``."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
