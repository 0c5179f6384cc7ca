"""Collaborator boundaries.

``protocols`` defines what the renderer needs from the chat surface and the
assistant runtime; ``opencode`` and ``console`` are the concrete bindings
shipped with the package.
"""

from __future__ import annotations

from chatrelay.backends.protocols import RenderSink, RuntimeControl, RuntimeMessage

__all__ = ["RenderSink", "RuntimeControl", "RuntimeMessage"]
