"""Render a live runtime session to the terminal."""

from __future__ import annotations

import anyio
import click

from chatrelay.backends.console import ConsoleRenderSink
from chatrelay.backends.opencode import OpencodeRuntime, RuntimeEventStream
from chatrelay.cli.ui import console
from chatrelay.config import settings
from chatrelay.observability import start_metrics_server
from chatrelay.renderer import ConversationRenderer


@click.command("watch")
@click.option("--session-id", required=True, help="Runtime session to follow")
@click.option("--chat-id", default="local", show_default=True)
@click.option("--base-url", default=None, help="Runtime URL (default: RUNTIME_BASE_URL)")
def watch(session_id: str, chat_id: str, base_url: str | None) -> None:
    """Follow a runtime session and print its cards as they change."""
    if settings.enable_metrics:
        start_metrics_server(settings.metrics_port)

    runtime = OpencodeRuntime(base_url)
    stream = RuntimeEventStream(base_url)
    sink = ConsoleRenderSink(console)

    async def _run() -> None:
        renderer = ConversationRenderer.from_settings(sink, runtime)
        renderer.bind_session(session_id, chat_id, session_id)
        console.print(f"[cyan]Watching session {session_id} on {runtime.base_url}[/cyan]")
        try:
            async for event in stream.events():
                await renderer.dispatch(event)
        finally:
            stream.stop()
            await renderer.aclose()

    try:
        anyio.run(_run)
    except KeyboardInterrupt:
        console.print("[yellow]Stopped.[/yellow]")
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def register(cli: click.Group) -> None:
    cli.add_command(watch)
