"""
Main CLI application using Typer with router-based command dispatch.

All command groups are registered through the CliRouter.
"""

from __future__ import annotations

import typer

from vodcast.infra.logging import configure_logging

from .commands import channel, client
from .router import get_router

app = typer.Typer(help="vodcast virtual channel CLI")

router = get_router(app)

router.register(
    "channel",
    channel.app,
    help_text="Channel playback operations",
)

router.register(
    "client",
    client.app,
    help_text="Viewer-side synchronization",
)


@app.callback()
def main(
    log_level: str = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    """vodcast: a looping virtual channel kept in sync across servers and viewers."""
    configure_logging(log_level)


@app.command("serve")
def serve(
    host: str = typer.Option(None, help="Bind address (default: HOST setting)"),
    port: int = typer.Option(None, help="Port (default: PORT setting)"),
):
    """Run the HTTP server."""
    from vodcast.web.server import run_server

    run_server(host=host, port=port)


def cli():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
