"""Runtime error classification into timeline notes."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

from cachetools import TTLCache

from chatrelay.observability.logging import get_logger
from chatrelay.observability.metrics import ERROR_NOTES

logger = get_logger(__name__)

__all__ = ["ErrorNote", "ErrorNoteDeduplicator", "classify_runtime_error"]


@dataclass(frozen=True)
class ErrorNote:
    category: str
    text: str
    aborted: bool = False


def _error_name(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("name") or error.get("type") or "")
    return ""


def _error_data(error: Any) -> dict[str, Any]:
    if isinstance(error, dict) and isinstance(error.get("data"), dict):
        return error["data"]
    return {}


def _error_message(error: Any) -> str:
    if isinstance(error, str):
        return error.strip()
    data = _error_data(error)
    for candidate in (data.get("message"), error.get("message") if isinstance(error, dict) else None):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def classify_runtime_error(error: Any) -> ErrorNote:
    """Map a runtime error payload to a human-readable note."""
    name = _error_name(error)
    data = _error_data(error)
    message = _error_message(error)

    if name == "ProviderAuthError":
        provider = data.get("providerID") or data.get("providerId") or "the model provider"
        return ErrorNote("auth", f"Authentication with {provider} failed. Check the API key.")

    if name == "APIError":
        status = data.get("statusCode")
        if status == 429 or "rate limit" in message.lower():
            return ErrorNote("rate_limit", "The model provider is rate limiting requests. Try again shortly.")
        detail = f" ({status})" if status else ""
        return ErrorNote("api", f"Model provider error{detail}: {message or 'no details'}")

    if name == "MessageOutputLengthError":
        return ErrorNote(
            "output_length", "The reply hit the output length limit and was cut short."
        )

    if name == "MessageAbortedError":
        return ErrorNote("aborted", "The request was stopped.", aborted=True)

    return ErrorNote("generic", f"The assistant failed: {message or name or 'unknown error'}")


def _fingerprint(error: Any) -> str:
    try:
        raw = json.dumps(error, sort_keys=True, default=str)
    except (TypeError, ValueError):
        raw = repr(error)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


class ErrorNoteDeduplicator:
    """Decides whether a runtime error still needs a note.

    Errors carrying a message id are noted once per (session, message).
    Message-less ``session.error`` events are matched by payload fingerprint,
    which also pairs them with the message error the runtime reports for the
    same failure. Fingerprints live for one turn; ``forget_fingerprints`` is
    called whenever a turn opens for new output.
    """

    def __init__(self, ttl_seconds: float = 600.0, maxsize: int = 4096) -> None:
        # fingerprint keys map to the message that claimed them, "" for session-level errors
        self._seen: TTLCache[tuple[str, str], str] = TTLCache(maxsize=maxsize, ttl=ttl_seconds)

    def should_emit(self, session_id: str, message_id: str | None, error: Any) -> bool:
        """False when this error was already noted for the message, or this turn's session."""
        fp_key = (session_id, f"fp:{_fingerprint(error)}")
        if not message_id:
            if fp_key in self._seen:
                logger.debug("error_note_duplicate", session_id=session_id)
                return False
            self._seen[fp_key] = ""
            return True

        msg_key = (session_id, f"msg:{message_id}")
        if msg_key in self._seen:
            logger.debug("error_note_duplicate", session_id=session_id, message_id=message_id)
            return False
        owner = self._seen.get(fp_key)
        self._seen[msg_key] = message_id
        self._seen[fp_key] = message_id
        if owner == "":
            logger.debug("error_note_already_shown", session_id=session_id, message_id=message_id)
            return False
        return True

    def record(self, note: ErrorNote) -> None:
        ERROR_NOTES.labels(category=note.category).inc()

    def forget_fingerprints(self, session_id: str) -> None:
        for key in [k for k in list(self._seen.keys()) if k[0] == session_id and k[1].startswith("fp:")]:
            self._seen.pop(key, None)

    def clear_session(self, session_id: str) -> None:
        for key in [k for k in list(self._seen.keys()) if k[0] == session_id]:
            self._seen.pop(key, None)
