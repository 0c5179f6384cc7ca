"""Protocol interfaces for the chat platform and the assistant runtime.

These are intentionally small: the renderer core only needs artifact CRUD on
the chat side and a handful of control-plane calls on the runtime side.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class RuntimeMessage:
    """One entry of the runtime's own conversation history."""

    id: str
    role: str


class RenderSink(Protocol):
    async def send_artifact(self, chat_id: str, document: dict[str, Any]) -> str | None: ...

    async def update_artifact(self, artifact_id: str, document: dict[str, Any]) -> bool: ...

    async def delete_artifact(self, artifact_id: str) -> None: ...


class RuntimeControl(Protocol):
    async def abort(self, session_id: str) -> bool: ...

    async def list_messages(self, session_id: str) -> list[RuntimeMessage]: ...

    async def rollback(self, session_id: str, target_message_id: str) -> bool: ...

    async def respond_permission(
        self, session_id: str, permission_id: str, allow: bool, remember: bool = False
    ) -> bool: ...

    async def reply_question(self, request_id: str, answers: list[list[str]]) -> bool: ...

    async def reject_question(self, request_id: str) -> bool: ...
