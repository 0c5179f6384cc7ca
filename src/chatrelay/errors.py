"""Domain-specific exceptions for the renderer core."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for chatrelay errors."""

    error: str = "relay_error"

    def __init__(self, message: str, *, error: str | None = None):
        super().__init__(message)
        if error:
            self.error = error


class UnknownConversationError(RelayError):
    error = "unknown_conversation"


class SegmentKindError(RelayError, ValueError):
    """A timeline key was reused with a different segment kind."""

    error = "segment_kind_conflict"


class InvalidInteractionError(RelayError, ValueError):
    error = "invalid_interaction"


class RuntimeControlError(RelayError):
    """The assistant runtime rejected or failed a control-plane call."""

    error = "runtime_control_error"

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
