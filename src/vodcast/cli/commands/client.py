"""
Client CLI commands.

A terminal viewer: polls a vodcast server with the ClientReconciler and
prints the extrapolated position.
"""

from __future__ import annotations

import json
import threading
import time

import typer

from vodcast.client.reconciler import ClientReconciler
from vodcast.infra.exceptions import ServerUnavailableError
from vodcast.infra.settings import settings

app = typer.Typer(help="Viewer-side synchronization")


def _line(reconciler: ClientReconciler) -> str:
    state = reconciler.state
    if state is None or state.item is None:
        return "No content"
    if reconciler.needs_buffering():
        return f"{state.item['title']}: buffering..."
    position = reconciler.position()
    return (
        f"{state.item['title']} @ {position:.1f}s / {state.duration:.0f}s"
        f" (rtt {state.round_trip * 1000:.0f}ms, offset {state.clock_offset:+.2f}s)"
    )


@app.command("watch")
def watch(
    url: str = typer.Argument(..., help="Server base URL, e.g. http://localhost:8000"),
    interval: float = typer.Option(None, "--interval", help="Poll interval in seconds"),
    once: bool = typer.Option(False, "--once", help="Poll once and exit"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format (with --once)"),
):
    """Follow the channel, printing the locally extrapolated position."""
    reconciler = ClientReconciler(url, poll_interval=interval or settings.poll_interval_seconds)

    if once:
        try:
            state = reconciler.sync()
        except ServerUnavailableError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
        if json_output:
            typer.echo(
                json.dumps(
                    {
                        "itemId": state.item_id,
                        "index": state.index,
                        "position": round(reconciler.position(), 3),
                        "clockOffset": round(state.clock_offset, 3),
                        "roundTrip": round(state.round_trip, 3),
                        "playableRef": reconciler.playable_ref(),
                    },
                    indent=2,
                )
            )
        else:
            typer.echo(_line(reconciler))
        return

    stop = threading.Event()
    worker = threading.Thread(target=reconciler.run, args=(stop,), daemon=True)
    worker.start()
    try:
        while True:
            time.sleep(1)
            typer.echo(_line(reconciler))
    except KeyboardInterrupt:
        typer.echo("\nStopping...")
        stop.set()
        worker.join(timeout=5)
