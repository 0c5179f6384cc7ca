"""chatrelay command-line interface.

Commands live in submodules under `chatrelay.cli.*` and register themselves on
the group below.
"""

from __future__ import annotations

import click

from chatrelay.app_version import get_app_version
from chatrelay.observability import init_observability


@click.group()
@click.version_option(version=get_app_version(), prog_name="chatrelay")
def cli() -> None:
    """chatrelay - stream assistant runtime output into chat cards."""
    init_observability()


def _register_commands() -> None:
    from chatrelay.cli import config, replay, watch

    config.register(cli)
    replay.register(cli)
    watch.register(cli)


_register_commands()


if __name__ == "__main__":
    cli()
