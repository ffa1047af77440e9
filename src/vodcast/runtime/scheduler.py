"""
Scheduler: what is playing now.

Pure logic: (playlist, reference state, now) -> PlaybackState.
No store, no clock reads, no I/O. Identical inputs always give identical
outputs.

Time units: the reference timestamp and ``now`` are epoch milliseconds
(int). Offsets are carried internally as integer milliseconds and exposed
as whole seconds.
"""

from __future__ import annotations

import bisect
import math
from dataclasses import dataclass
from typing import Any, Mapping

from vodcast.domain.playlist import DEFAULT_DURATION_SECONDS, Playlist, PlaylistItem
from vodcast.infra.exceptions import MalformedStateError


@dataclass(frozen=True)
class PlaybackReferenceState:
    """The persisted, shared anchor of the channel.

    At ``reference_timestamp`` the item ``current_item_id`` (expected at
    ``current_index``) was ``offset_at_reference`` seconds in. Everything
    else is derived from this record by arithmetic.
    """

    current_item_id: str
    current_index: int
    offset_at_reference: float
    reference_timestamp: int
    is_playing: bool = True
    total_item_count: int = 0
    server_start_time: int | None = None

    @classmethod
    def initial(cls, playlist: Playlist, now_ms: int) -> PlaybackReferenceState:
        """Index 0, offset 0, as of ``now_ms``."""
        first = playlist[0].id if len(playlist) else ""
        return cls(
            current_item_id=first,
            current_index=0,
            offset_at_reference=0.0,
            reference_timestamp=now_ms,
            is_playing=True,
            total_item_count=len(playlist),
            server_start_time=now_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentItemId": self.current_item_id,
            "currentIndex": self.current_index,
            "offsetAtReference": self.offset_at_reference,
            "referenceTimestamp": self.reference_timestamp,
            "isPlaying": self.is_playing,
            "totalItemCount": self.total_item_count,
            "serverStartTime": self.server_start_time,
        }

    @classmethod
    def from_dict(cls, data: Any) -> PlaybackReferenceState:
        """Decode a stored record.

        Raises:
            MalformedStateError: If a required field is missing or mistyped.
        """
        if not isinstance(data, Mapping):
            raise MalformedStateError(f"reference state must be an object, got {type(data).__name__}")
        try:
            item_id = data["currentItemId"]
            index = data["currentIndex"]
            offset = data["offsetAtReference"]
            timestamp = data["referenceTimestamp"]
        except KeyError as e:
            raise MalformedStateError(f"reference state missing field {e.args[0]!r}") from e

        if not isinstance(item_id, str):
            raise MalformedStateError("currentItemId must be a string")
        if isinstance(index, bool) or not isinstance(index, int):
            raise MalformedStateError("currentIndex must be an integer")
        if not _is_finite_number(offset) or offset < 0:
            raise MalformedStateError("offsetAtReference must be a finite non-negative number")
        if not _is_finite_number(timestamp):
            raise MalformedStateError("referenceTimestamp must be a finite number")

        start = data.get("serverStartTime")
        try:
            return cls(
                current_item_id=item_id,
                current_index=index,
                offset_at_reference=float(offset),
                reference_timestamp=int(timestamp),
                is_playing=bool(data.get("isPlaying", True)),
                total_item_count=int(data.get("totalItemCount") or 0),
                server_start_time=int(start) if _is_finite_number(start) else None,
            )
        except (TypeError, ValueError, OverflowError) as e:
            raise MalformedStateError(f"reference state has a mistyped field: {e}") from e


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


@dataclass(frozen=True)
class PlaybackState:
    """Result of :func:`compute_state`."""

    current_index: int
    current_item: PlaylistItem | None
    offset_seconds: int
    next_item: PlaylistItem | None
    remaining_seconds: int
    is_playing: bool
    offset_ms: int = 0

    @property
    def has_content(self) -> bool:
        return self.current_item is not None


NO_CONTENT = PlaybackState(
    current_index=-1,
    current_item=None,
    offset_seconds=0,
    next_item=None,
    remaining_seconds=0,
    is_playing=False,
    offset_ms=0,
)


def resolve_start_index(playlist: Playlist, reference: PlaybackReferenceState) -> int:
    """Validate the reference's index fast-path against its item id.

    The playlist may have been edited since the reference was written:
    prefer the item's current position, fall back to the (clamped) index
    when the item is gone.
    """
    n = len(playlist)
    idx = reference.current_index
    if 0 <= idx < n and playlist[idx].id == reference.current_item_id:
        return idx
    found = playlist.index_of(reference.current_item_id)
    if found is not None:
        return found
    return min(max(idx, 0), n - 1)


def compute_state(
    playlist: Playlist,
    reference: PlaybackReferenceState,
    now_ms: int,
    *,
    default_duration: int = DEFAULT_DURATION_SECONDS,
) -> PlaybackState:
    """
    Compute the playing item and offset at ``now_ms``.

    The position since the reference is ``offset_at_reference + elapsed``,
    measured from the start of the reference item. It is placed on the
    looped timeline (modulo total playlist duration) and the containing
    item is found by bisecting the cumulative start times.

    Negative elapsed time (clock skew) counts as zero. A paused reference
    does not advance.

    Returns:
        NO_CONTENT for an empty playlist, otherwise a PlaybackState with
        ``0 <= offset_seconds < current_item duration``.
    """
    if playlist.is_empty:
        return NO_CONTENT

    durations_ms = [d * 1000 for d in playlist.durations(default_duration)]
    starts_ms = [0]
    for d in durations_ms[:-1]:
        starts_ms.append(starts_ms[-1] + d)
    total_ms = starts_ms[-1] + durations_ms[-1]

    start_index = resolve_start_index(playlist, reference)
    elapsed_ms = max(0, now_ms - reference.reference_timestamp) if reference.is_playing else 0
    offset_ms = max(0, int(round(reference.offset_at_reference * 1000)))

    cycle_ms = (starts_ms[start_index] + offset_ms + elapsed_ms) % total_ms
    index = bisect.bisect_right(starts_ms, cycle_ms) - 1
    within_ms = cycle_ms - starts_ms[index]

    offset_seconds = within_ms // 1000
    return PlaybackState(
        current_index=index,
        current_item=playlist[index],
        offset_seconds=offset_seconds,
        next_item=playlist[(index + 1) % len(playlist)],
        remaining_seconds=durations_ms[index] // 1000 - offset_seconds,
        is_playing=reference.is_playing,
        offset_ms=within_ms,
    )


def anchor(
    state: PlaybackState,
    now_ms: int,
    *,
    total_item_count: int,
    server_start_time: int | None,
    is_playing: bool | None = None,
) -> PlaybackReferenceState:
    """Turn a computed state back into a fresh reference as of ``now_ms``.

    The returned reference reproduces ``state`` exactly at ``now_ms``.
    """
    if state.current_item is None:
        raise ValueError("cannot anchor a state without content")
    return PlaybackReferenceState(
        current_item_id=state.current_item.id,
        current_index=state.current_index,
        offset_at_reference=state.offset_ms / 1000,
        reference_timestamp=now_ms,
        is_playing=state.is_playing if is_playing is None else is_playing,
        total_item_count=total_item_count,
        server_start_time=server_start_time,
    )
