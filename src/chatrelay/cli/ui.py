"""Shared CLI UI helpers (Rich formatting)."""

from __future__ import annotations

from typing import Iterable

from rich.console import Console
from rich.table import Table

from chatrelay.backends.console import ConsoleArtifact
from chatrelay.interactions.ledger import Interaction, InteractionKind

console = Console()


def format_kind(kind: str) -> str:
    """Return colorized interaction kind for terminal output."""
    colors = {
        InteractionKind.NORMAL.value: "cyan",
        InteractionKind.QUESTION_PROMPT.value: "yellow",
        InteractionKind.QUESTION_ANSWER.value: "green",
    }
    color = colors.get(kind, "white")
    return f"[{color}]{kind}[/{color}]"


def render_artifacts_table(artifacts: Iterable[ConsoleArtifact]) -> None:
    table = Table(title="Artifacts", show_lines=False)
    table.add_column("ID", style="white")
    table.add_column("Title", style="cyan")
    table.add_column("Updates", justify="right")
    table.add_column("State", style="bold")

    for artifact in artifacts:
        state = "[red]deleted[/red]" if artifact.deleted else "[green]live[/green]"
        table.add_row(artifact.artifact_id, artifact.title, str(artifact.updates), state)

    console.print(table)


def render_ledger_table(entries: Iterable[Interaction]) -> None:
    table = Table(title="Interaction Ledger", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Kind", style="bold")
    table.add_column("Bot artifacts", style="white")
    table.add_column("User artifact", style="white")
    table.add_column("Runtime message", style="magenta")

    for index, entry in enumerate(entries, start=1):
        table.add_row(
            str(index),
            format_kind(entry.kind.value),
            ", ".join(entry.bot_artifact_ids),
            entry.user_artifact_id or "-",
            entry.assistant_message_id or "-",
        )

    console.print(table)
