"""Render sink that prints cards to the terminal.

Used by the CLI (``replay`` / ``watch``) in place of a chat platform. Artifacts
are kept in memory so the CLI can summarise what a real chat would show.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Optional

from rich.console import Console, Group
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule

from chatrelay.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = ["ConsoleArtifact", "ConsoleRenderSink", "document_renderable"]

_TEMPLATE_STYLES = {
    "blue": "cyan",
    "green": "green",
    "red": "red",
    "grey": "grey62",
    "orange": "yellow",
    "indigo": "magenta",
}


@dataclass
class ConsoleArtifact:
    artifact_id: str
    chat_id: str
    document: dict[str, Any]
    updates: int = 0
    deleted: bool = False
    history: list[str] = field(default_factory=list)

    @property
    def title(self) -> str:
        return str(self.document.get("header", {}).get("title", {}).get("content", ""))


def _element_renderables(elements: list[dict[str, Any]]) -> list[Any]:
    out: list[Any] = []
    for element in elements:
        tag = element.get("tag")
        if tag == "markdown":
            out.append(Markdown(str(element.get("content", ""))))
        elif tag == "hr":
            out.append(Rule(style="grey50"))
        elif tag == "collapsible_panel":
            title = element.get("header", {}).get("title", {}).get("content", "")
            inner = _element_renderables(element.get("elements", []))
            if element.get("expanded"):
                out.append(Panel(Group(*inner), title=title, title_align="left"))
            else:
                out.append(f"[dim]▸ {title}[/dim]")
    return out


def document_renderable(artifact_id: str, document: dict[str, Any]) -> Panel:
    header = document.get("header", {})
    title = header.get("title", {}).get("content", "")
    style = _TEMPLATE_STYLES.get(str(header.get("template", "")), "white")
    body = _element_renderables(document.get("body", {}).get("elements", []))
    return Panel(
        Group(*body),
        title=f"[bold]{title}[/bold]",
        subtitle=artifact_id,
        border_style=style,
    )


class ConsoleRenderSink:
    """``RenderSink`` backed by a rich console."""

    def __init__(self, console: Optional[Console] = None, *, quiet: bool = False) -> None:
        self.console = console or Console()
        self.quiet = quiet
        self.artifacts: dict[str, ConsoleArtifact] = {}
        self._ids = itertools.count(1)

    async def send_artifact(self, chat_id: str, document: dict[str, Any]) -> str | None:
        artifact_id = f"art-{next(self._ids)}"
        self.artifacts[artifact_id] = ConsoleArtifact(artifact_id, chat_id, document)
        if not self.quiet:
            self.console.print(document_renderable(artifact_id, document))
        return artifact_id

    async def update_artifact(self, artifact_id: str, document: dict[str, Any]) -> bool:
        artifact = self.artifacts.get(artifact_id)
        if artifact is None or artifact.deleted:
            return False
        artifact.history.append(artifact.title)
        artifact.document = document
        artifact.updates += 1
        if not self.quiet:
            self.console.print(document_renderable(f"{artifact_id} (updated)", document))
        return True

    async def delete_artifact(self, artifact_id: str) -> None:
        artifact = self.artifacts.get(artifact_id)
        if artifact is None:
            logger.debug("console_delete_unknown", artifact_id=artifact_id)
            return
        artifact.deleted = True
        if not self.quiet:
            self.console.print(f"[dim]deleted {artifact_id}[/dim]")

    def live_artifacts(self) -> list[ConsoleArtifact]:
        return [a for a in self.artifacts.values() if not a.deleted]
