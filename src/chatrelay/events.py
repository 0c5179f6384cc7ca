"""Inbound runtime event models.

The runtime publishes ``{"type": ..., "properties": {...}}`` envelopes on its
event stream. Field names arrive in a mix of ``sessionID`` / ``sessionId``
spellings, so every model accepts both.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from chatrelay.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "EventPart",
    "PartUpdatedEvent",
    "SessionStatusEvent",
    "SessionIdleEvent",
    "SessionErrorEvent",
    "MessageInfo",
    "MessageUpdatedEvent",
    "QuestionOption",
    "QuestionInfo",
    "QuestionAskedEvent",
    "PermissionRequestEvent",
    "RuntimeEvent",
    "parse_runtime_event",
]

_SESSION_ALIASES = AliasChoices("sessionID", "sessionId", "session_id")


class _EventModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EventPart(_EventModel):
    id: Optional[str] = None
    type: str = "text"
    session_id: Optional[str] = Field(default=None, validation_alias=_SESSION_ALIASES)
    message_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("messageID", "messageId", "message_id")
    )
    text: Optional[str] = None
    tool: Optional[str] = None
    call_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("callID", "callId", "call_id")
    )
    state: Optional[dict[str, Any]] = None
    # sub-task parts
    agent: Optional[str] = None
    description: Optional[str] = None
    # retry parts
    attempt: Optional[int] = None
    error: Optional[Any] = None


class PartUpdatedEvent(_EventModel):
    type: Literal["message.part.updated"] = "message.part.updated"
    session_id: str = Field(default="", validation_alias=_SESSION_ALIASES)
    part: Optional[EventPart] = None
    delta: Optional[Union[str, dict[str, Any]]] = None

    @property
    def resolved_session_id(self) -> str:
        return self.session_id or (self.part.session_id if self.part else "") or ""


class SessionStatusEvent(_EventModel):
    type: Literal["session.status"] = "session.status"
    session_id: str = Field(default="", validation_alias=_SESSION_ALIASES)
    status: dict[str, Any] = Field(default_factory=dict)

    @property
    def status_type(self) -> str:
        return str(self.status.get("type") or "")

    @property
    def attempt(self) -> int | None:
        attempt = self.status.get("attempt")
        return int(attempt) if isinstance(attempt, (int, float)) else None

    @property
    def message(self) -> str:
        return str(self.status.get("message") or "")


class SessionIdleEvent(_EventModel):
    type: Literal["session.idle"] = "session.idle"
    session_id: str = Field(default="", validation_alias=_SESSION_ALIASES)


class SessionErrorEvent(_EventModel):
    type: Literal["session.error"] = "session.error"
    session_id: str = Field(default="", validation_alias=_SESSION_ALIASES)
    error: Optional[Any] = None


class MessageInfo(_EventModel):
    id: str
    role: str = "assistant"
    session_id: str = Field(default="", validation_alias=_SESSION_ALIASES)
    error: Optional[Any] = None
    time: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return bool(self.time.get("completed"))


class MessageUpdatedEvent(_EventModel):
    type: Literal["message.updated"] = "message.updated"
    info: MessageInfo

    @property
    def session_id(self) -> str:
        return self.info.session_id


class QuestionOption(_EventModel):
    label: str
    description: str = ""


class QuestionInfo(_EventModel):
    question: str
    header: str = ""
    options: list[QuestionOption] = Field(default_factory=list)
    multiple: bool = False
    custom: bool = True


class QuestionAskedEvent(_EventModel):
    type: Literal["question.asked"] = "question.asked"
    id: str
    session_id: str = Field(default="", validation_alias=_SESSION_ALIASES)
    questions: list[QuestionInfo] = Field(default_factory=list)


class PermissionRequestEvent(_EventModel):
    type: Literal["permission.asked"] = "permission.asked"
    session_id: str = Field(default="", validation_alias=_SESSION_ALIASES)
    permission_id: str = Field(
        default="", validation_alias=AliasChoices("permissionID", "permissionId", "id")
    )
    tool: str = "unknown"
    description: str = ""
    risk: Optional[str] = None


RuntimeEvent = Union[
    PartUpdatedEvent,
    SessionStatusEvent,
    SessionIdleEvent,
    SessionErrorEvent,
    MessageUpdatedEvent,
    QuestionAskedEvent,
    PermissionRequestEvent,
]


def _permission_label(props: dict[str, Any]) -> str:
    permission = props.get("permission")
    if isinstance(permission, str) and permission.strip():
        return permission
    tool = props.get("tool")
    if isinstance(tool, str) and tool.strip():
        return tool
    if isinstance(tool, dict) and isinstance(tool.get("name"), str) and tool["name"].strip():
        return tool["name"]
    return "unknown"


def _permission_properties(props: dict[str, Any]) -> dict[str, Any]:
    # permission.asked carries the tool as a {messageID, callID} reference, so the
    # human label comes from `permission` first.
    normalized = dict(props)
    normalized["tool"] = _permission_label(props)
    if not normalized.get("description") and isinstance(props.get("metadata"), dict):
        normalized["description"] = ", ".join(
            f"{k}={v}" for k, v in props["metadata"].items()
        )
    return normalized


def parse_runtime_event(event_type: str, properties: dict[str, Any] | None) -> RuntimeEvent | None:
    """Turn a raw runtime envelope into a typed event; unknown or malformed events yield None."""
    props = properties or {}
    try:
        if event_type == "message.part.updated":
            return PartUpdatedEvent.model_validate(props)
        if event_type == "session.status":
            return SessionStatusEvent.model_validate(props)
        if event_type == "session.idle":
            return SessionIdleEvent.model_validate(props)
        if event_type == "session.error":
            return SessionErrorEvent.model_validate(props)
        if event_type == "message.updated":
            return MessageUpdatedEvent.model_validate(props)
        if event_type == "question.asked":
            return QuestionAskedEvent.model_validate(props)
        if event_type in ("permission.asked", "permission.request", "permission.updated"):
            return PermissionRequestEvent.model_validate(_permission_properties(props))
    except ValidationError as exc:
        logger.warning("runtime_event_invalid", event_type=event_type, error=str(exc))
        return None
    return None
