"""Interaction ledger and undo."""

from chatrelay.interactions.ledger import Interaction, InteractionKind, InteractionLedger
from chatrelay.interactions.undo import UndoEngine, UndoResult

__all__ = ["Interaction", "InteractionKind", "InteractionLedger", "UndoEngine", "UndoResult"]
