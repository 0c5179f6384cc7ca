"""Structured logging for the renderer and its CLI.

Every renderer log line carries the conversation it belongs to. ``dispatch``
enters ``conversation_context`` for each runtime event, so handlers deep in the
flush pipeline log with ``conversation_key`` and ``session_id`` already set.
Nothing here runs on import; ``configure_logging`` is called once by
``init_observability``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, MutableMapping

import structlog

conversation_key_var: ContextVar[str] = ContextVar("conversation_key", default="")


def _add_conversation_key(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    conversation_key = conversation_key_var.get("")
    if conversation_key and "conversation_key" not in event_dict:
        event_dict["conversation_key"] = conversation_key
    return event_dict


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_conversation_key,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name) if name else structlog.get_logger()


def get_conversation_key() -> str:
    """Conversation key of the event currently being handled, or ""."""
    return conversation_key_var.get("")


@contextmanager
def conversation_context(conversation_key: str, session_id: str = "") -> Iterator[None]:
    """Tag log lines emitted inside the block with the conversation (and session)."""
    token = conversation_key_var.set(conversation_key)
    try:
        if session_id:
            with structlog.contextvars.bound_contextvars(session_id=session_id):
                yield
        else:
            yield
    finally:
        conversation_key_var.reset(token)


logger = get_logger("chatrelay")
