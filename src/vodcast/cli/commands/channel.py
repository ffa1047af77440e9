"""
Channel CLI commands.

Operate on the channel directly through the shared store, the same way
the HTTP mutation endpoint does. Useful when the server is down or for
scripted maintenance.
"""

from __future__ import annotations

import json
from typing import Any

import typer

from vodcast.infra.exceptions import ContentSourceError, ItemNotFoundError, ValidationError
from vodcast.infra.settings import settings
from vodcast.runtime.sync_coordinator import MutationResult, SyncCoordinator

app = typer.Typer(help="Channel playback operations")


def _get_coordinator() -> SyncCoordinator:
    return SyncCoordinator.from_settings(settings)


def _fail(message: str, json_output: bool) -> None:
    if json_output:
        typer.echo(json.dumps({"status": "error", "error": message}, indent=2))
    else:
        typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _run_mutation(fn, json_output: bool) -> MutationResult:
    try:
        result = fn()
    except (ValidationError, ItemNotFoundError, ContentSourceError) as e:
        _fail(str(e), json_output)
    if json_output:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        typer.echo(f"{result.message} ({result.total_items} items)")
    return result


def _format_duration(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:d}:{minutes:02d}:{secs:02d}"


@app.command("now")
def now(
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
    include_playlist: bool = typer.Option(False, "--playlist", help="Include the full catalog"),
):
    """Show what is playing right now."""
    data: dict[str, Any] = _get_coordinator().current().to_dict(include_playlist=include_playlist)
    if json_output:
        typer.echo(json.dumps(data, indent=2))
        return

    item = data["currentItem"]
    if item is None:
        typer.echo("No content")
        return
    state = "playing" if data["isPlaying"] else "paused"
    typer.echo(f"Now {state}: {item['title']} [{item['id']}]")
    typer.echo(f"  Position: {_format_duration(data['offsetSeconds'])} ({data['remainingSeconds']}s left)")
    typer.echo(f"  Index: {data['currentIndex'] + 1}/{data['totalItems']}")
    if data["nextItem"]:
        typer.echo(f"  Next: {data['nextItem']['title']}")
    if include_playlist:
        for i, entry in enumerate(data.get("playlist", [])):
            marker = ">" if i == data["currentIndex"] else " "
            typer.echo(f"  {marker} {i:3d}. {entry['title']} ({_format_duration(entry['durationSeconds'])})")


@app.command("refresh")
def refresh(json_output: bool = typer.Option(False, "--json", help="Output in JSON format")):
    """Re-pull the catalog from the content source."""
    _run_mutation(_get_coordinator().refresh, json_output)


@app.command("set-duration")
def set_duration(
    item_id: str = typer.Argument(..., help="Item id"),
    seconds: int = typer.Argument(..., help="True duration in seconds"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Record an item's true duration."""
    coordinator = _get_coordinator()
    _run_mutation(lambda: coordinator.set_duration(item_id, seconds), json_output)


@app.command("force-sync")
def force_sync(
    item_id: str = typer.Argument(None, help="Item id to jump to"),
    index: int = typer.Option(None, "--index", "-i", help="Jump to this index instead of an id"),
    offset: float = typer.Option(0.0, "--offset", "-o", help="Offset into the item in seconds"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Point the channel at an item and offset as of now."""
    coordinator = _get_coordinator()
    _run_mutation(
        lambda: coordinator.force_sync(item_id=item_id, index=index, offset_seconds=offset),
        json_output,
    )


@app.command("pause")
def pause(json_output: bool = typer.Option(False, "--json", help="Output in JSON format")):
    """Freeze the channel at its current position."""
    _run_mutation(_get_coordinator().pause, json_output)


@app.command("play")
def play(json_output: bool = typer.Option(False, "--json", help="Output in JSON format")):
    """Resume a paused channel."""
    _run_mutation(_get_coordinator().play, json_output)


@app.command("status")
def status(json_output: bool = typer.Option(False, "--json", help="Output in JSON format")):
    """Show shared store health and run a connectivity check."""
    data = _get_coordinator().status(check_store=True)
    if json_output:
        typer.echo(json.dumps(data, indent=2))
    else:
        typer.echo(f"Channel: {data['channelId']}")
        typer.echo(f"  Backend: {data['backend']}")
        typer.echo(f"  Configured: {str(data['configured']).lower()}")
        typer.echo(f"  Degraded: {str(data['degraded']).lower()}")
        typer.echo(f"  Store check: {'ok' if data['storeCheck'] else 'failed'}")
        typer.echo(f"  Items: {data['totalItems']}")
        typer.echo(f"  Uptime: {_format_duration(data['uptimeSeconds'])}")
    if data["configured"] and not data["storeCheck"]:
        raise typer.Exit(1)
