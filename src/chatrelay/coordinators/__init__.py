"""Permission queue and question state machine."""

from chatrelay.coordinators.permissions import PendingPermission, PermissionQueue, ResolveOutcome
from chatrelay.coordinators.questions import (
    PendingQuestion,
    QuestionCoordinator,
    QuestionOutcome,
    QuestionResult,
)

__all__ = [
    "PendingPermission",
    "PermissionQueue",
    "ResolveOutcome",
    "PendingQuestion",
    "QuestionCoordinator",
    "QuestionOutcome",
    "QuestionResult",
]
