"""Configuration CLI commands."""

from __future__ import annotations

import click
from rich.table import Table

from chatrelay.cli.ui import console
from chatrelay.config import settings


@click.group()
def config() -> None:
    """Inspect configuration."""


@config.command("show")
def config_show() -> None:
    """Show the effective renderer settings."""
    table = Table(title="chatrelay Configuration", show_lines=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Environment", settings.environment)
    table.add_row("Runtime URL", settings.runtime_base_url)
    table.add_row("Update interval (ms)", str(settings.output_update_interval_ms))
    table.add_row("Card component budget", str(settings.card_component_budget))
    table.add_row("Timeline max segments", str(settings.timeline_max_segments))
    table.add_row("Tool output max chars", str(settings.tool_output_max_chars))
    table.add_row("Permission TTL (s)", str(settings.permission_request_ttl_seconds))
    table.add_row("Tool whitelist", ", ".join(settings.tool_whitelist) or "-")
    table.add_row("Question TTL (s)", str(settings.question_ttl_seconds))
    table.add_row("Ledger max entries", str(settings.ledger_max_entries))
    table.add_row("Log level", settings.log_level)
    table.add_row(
        "Metrics",
        f"port {settings.metrics_port}" if settings.enable_metrics else "disabled",
    )

    console.print(table)


def register(cli: click.Group) -> None:
    cli.add_command(config)
