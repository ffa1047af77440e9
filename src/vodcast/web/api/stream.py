"""
REST API endpoints for the channel.

Query endpoints are served to every viewer and must always reflect live
computed state; the server middleware marks them no-store. The single
mutation endpoint is discriminated by ``action``.
"""

from __future__ import annotations

from typing import Any, Callable

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from ...infra.exceptions import (
    ContentSourceError,
    ItemNotFoundError,
    UnknownActionError,
    ValidationError,
)
from ...runtime.clock import ms_to_iso
from ...runtime.sync_coordinator import MutationResult, SyncCoordinator

router = APIRouter(prefix="/api/stream", tags=["stream"])


def get_coordinator(request: Request) -> SyncCoordinator:
    """Coordinator bound to the application at startup."""
    return request.app.state.coordinator


# ============================================================================
# Request models
# ============================================================================


class PlaylistAction(BaseModel):
    """Request model for POST /api/stream/playlist."""

    model_config = ConfigDict(populate_by_name=True)

    action: str = Field(..., description="refresh | set | add | remove | set-duration | force-sync | pause | play")
    playlist: Any = Field(None, description="Items for 'set'")
    item: Any = Field(None, description="Item for 'add'")
    item_id: str | None = Field(None, alias="itemId", description="Target of remove/set-duration/force-sync")
    duration_seconds: Any = Field(None, alias="durationSeconds", description="New duration for 'set-duration'")
    index: int | None = Field(None, description="Target index for 'force-sync'")
    offset_seconds: Any = Field(0, alias="offsetSeconds", description="Offset for 'force-sync'")


# ============================================================================
# Query endpoints
# ============================================================================


@router.get("/current")
def get_current(
    include_playlist: bool = Query(False, description="Include the full catalog"),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    """Live playback state."""
    return coordinator.current().to_dict(include_playlist=include_playlist)


@router.get("/sync")
def get_sync(
    include_playlist: bool = Query(False, description="Include the full catalog"),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    """Alias of /current kept for older clients."""
    return coordinator.current().to_dict(include_playlist=include_playlist)


@router.get("/playlist")
def get_playlist(coordinator: SyncCoordinator = Depends(get_coordinator)) -> dict[str, Any]:
    """Whole catalog with the current position."""
    snapshot = coordinator.current()
    state = snapshot.state
    return {
        "playlist": snapshot.catalog(),
        "totalItems": len(snapshot.playlist),
        "totalDurationSeconds": snapshot.total_duration_seconds,
        "currentIndex": state.current_index,
        "currentItem": state.current_item.to_public_dict() if state.current_item else None,
        "lastUpdated": ms_to_iso(snapshot.server_time_ms),
    }


@router.get("/status")
def get_status(coordinator: SyncCoordinator = Depends(get_coordinator)) -> dict[str, Any]:
    """Operator view of store health."""
    return coordinator.status()


# ============================================================================
# Mutation endpoint
# ============================================================================


def _dispatch(coordinator: SyncCoordinator, body: PlaylistAction) -> MutationResult:
    actions: dict[str, Callable[[], MutationResult]] = {
        "refresh": coordinator.refresh,
        "set": lambda: coordinator.set_playlist(body.playlist),
        "add": lambda: coordinator.add_item(body.item),
        "remove": lambda: coordinator.remove_item(body.item_id),
        "set-duration": lambda: coordinator.set_duration(body.item_id, body.duration_seconds),
        "force-sync": lambda: coordinator.force_sync(
            item_id=body.item_id, index=body.index, offset_seconds=body.offset_seconds
        ),
        "pause": coordinator.pause,
        "play": coordinator.play,
    }
    handler = actions.get(body.action)
    if handler is None:
        raise UnknownActionError(f"Unknown action: {body.action}")
    return handler()


@router.post("/playlist")
def post_playlist(
    body: PlaylistAction,
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    """Apply one administrative action to the channel."""
    try:
        return _dispatch(coordinator, body).to_dict()
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ContentSourceError as e:
        raise HTTPException(status_code=502, detail=f"Content source failed: {e}")
