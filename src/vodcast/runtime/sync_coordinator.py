"""Sync coordinator: server-side owner of the channel's playback state.

Stateless between calls: every operation re-reads the catalog and the
reference from the shared store, computes, and writes whole values back.
Any number of instances may run side by side; the last write wins and the
scheduler recomputes the right position from whichever valid reference
it finds.

State machine per channel:
    Uninitialized  no reference stored; first read with a non-empty
                   catalog writes index 0 / offset 0 / now.
    Running        reads recompute; crossing an item boundary persists a
                   fresh reference (lazy advance).
    Stopped        ``is_playing`` false; offset frozen until ``play``.

Administrative edits first re-anchor the reference at "now" using the old
catalog, then apply the edit, so elapsed time is never re-interpreted
under new durations.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from vodcast.domain.playlist import (
    DEFAULT_DURATION_SECONDS,
    Playlist,
    PlaylistItem,
    coerce_duration,
)
from vodcast.infra.exceptions import (
    ContentSourceError,
    ItemNotFoundError,
    MalformedStateError,
    ValidationError,
)
from vodcast.infra.logging import get_logger
from vodcast.infra.settings import Settings
from vodcast.runtime.clock import Clock, SystemClock, ms_to_iso
from vodcast.runtime.content_source import (
    ContentSource,
    build_content_source,
    playlist_from_events,
)
from vodcast.runtime.duration_probe import DurationProber
from vodcast.runtime.scheduler import (
    NO_CONTENT,
    PlaybackReferenceState,
    PlaybackState,
    anchor,
    compute_state,
)
from vodcast.runtime.state_store import SharedStateStore, build_state_store
from vodcast.runtime.store_keys import ChannelKeys

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChannelSnapshot:
    """What a viewer query returns: computed state plus catalog totals."""

    state: PlaybackState
    playlist: Playlist
    server_time_ms: int
    default_duration: int = DEFAULT_DURATION_SECONDS

    @property
    def total_duration_seconds(self) -> int:
        return self.playlist.total_duration(self.default_duration)

    def catalog(self) -> list[dict[str, Any]]:
        """Catalog entries with effective durations filled in."""
        return [
            {**item.to_dict(), "durationSeconds": item.effective_duration(self.default_duration)}
            for item in self.playlist
        ]

    def to_dict(self, *, include_playlist: bool = False) -> dict[str, Any]:
        state = self.state
        data: dict[str, Any] = {
            "currentItem": state.current_item.to_public_dict() if state.current_item else None,
            "currentIndex": state.current_index,
            "offsetSeconds": state.offset_seconds,
            "remainingSeconds": state.remaining_seconds,
            "isPlaying": state.is_playing,
            "totalItems": len(self.playlist),
            "totalDurationSeconds": self.total_duration_seconds,
            "nextItem": state.next_item.to_public_dict() if state.next_item else None,
            "serverTime": ms_to_iso(self.server_time_ms),
        }
        if include_playlist:
            data["playlist"] = self.catalog()
        return data


@dataclass(frozen=True)
class MutationResult:
    """Confirmation returned by every administrative action."""

    message: str
    total_items: int
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "message": self.message, "totalItems": self.total_items, **self.extra}


class SyncCoordinator:
    """Reconciles scheduler output with the shared store for one channel."""

    def __init__(
        self,
        store: SharedStateStore,
        *,
        content_source: ContentSource | None = None,
        clock: Clock | None = None,
        keys: ChannelKeys | None = None,
        default_duration: int = DEFAULT_DURATION_SECONDS,
        preserve_position_on_refresh: bool = False,
        prober: DurationProber | None = None,
        ttl_refresh_interval: float = 300.0,
        monotonic_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.content_source = content_source
        self.clock = clock or SystemClock()
        self.keys = keys or ChannelKeys()
        self.default_duration = default_duration
        self.preserve_position_on_refresh = preserve_position_on_refresh
        self.prober = prober
        self._ttl_refresh_interval = ttl_refresh_interval
        self._monotonic = monotonic_fn
        self._last_touch: float | None = None

    @classmethod
    def from_settings(
        cls,
        cfg: Settings,
        *,
        store: SharedStateStore | None = None,
        content_source: ContentSource | None = None,
        clock: Clock | None = None,
    ) -> SyncCoordinator:
        prober = None
        if cfg.probe_durations:
            prober = DurationProber(ffprobe_path=cfg.ffprobe_path, timeout=cfg.probe_timeout_seconds)
        return cls(
            store or build_state_store(cfg),
            content_source=content_source or build_content_source(cfg),
            clock=clock,
            keys=ChannelKeys(prefix=cfg.key_prefix, channel_id=cfg.channel_id),
            default_duration=cfg.default_duration_seconds,
            preserve_position_on_refresh=cfg.preserve_position_on_refresh,
            prober=prober,
            ttl_refresh_interval=cfg.ttl_refresh_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    def _load_playlist(self) -> Playlist | None:
        """Return the stored catalog, or None when absent or unreadable."""
        try:
            data = self.store.get_json(self.keys.playlist)
        except MalformedStateError as e:
            logger.warning("playlist_malformed", error=str(e))
            return None
        if data is None:
            return None
        if not isinstance(data, list):
            logger.warning("playlist_malformed", error="stored playlist is not a list")
            return None
        return Playlist.from_list(data)

    def _save_playlist(self, playlist: Playlist) -> None:
        self.store.set_json(self.keys.playlist, playlist.to_list())

    def _load_reference(self) -> PlaybackReferenceState | None:
        """Return the stored reference, or None when absent, expired or corrupt."""
        try:
            data = self.store.get_json(self.keys.sync_state)
            if data is None:
                return None
            return PlaybackReferenceState.from_dict(data)
        except MalformedStateError as e:
            logger.warning("reference_state_malformed", error=str(e))
            return None

    def _save_reference(self, reference: PlaybackReferenceState | None) -> None:
        if reference is None:
            self.store.delete(self.keys.sync_state)
        else:
            self.store.set_json(self.keys.sync_state, reference.to_dict())

    def _load_overrides(self) -> dict[str, int]:
        try:
            data = self.store.get_json(self.keys.duration_overrides)
        except MalformedStateError as e:
            logger.warning("duration_overrides_malformed", error=str(e))
            return {}
        if not isinstance(data, Mapping):
            return {}
        overrides = {}
        for item_id, value in data.items():
            seconds = coerce_duration(value)
            if seconds is not None:
                overrides[str(item_id)] = seconds
        return overrides

    def _touch(self) -> None:
        """Keep an active channel's keys alive between writes."""
        now = self._monotonic()
        if self._last_touch is not None and now - self._last_touch < self._ttl_refresh_interval:
            return
        self._last_touch = now
        for key in (self.keys.sync_state, self.keys.playlist, self.keys.duration_overrides):
            self.store.touch(key)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _compute(self, playlist: Playlist, reference: PlaybackReferenceState, now_ms: int) -> PlaybackState:
        return compute_state(playlist, reference, now_ms, default_duration=self.default_duration)

    def _anchored_reference(self, playlist: Playlist, now_ms: int) -> PlaybackReferenceState | None:
        """Current position as a fresh reference at ``now_ms`` (None if no content)."""
        if playlist.is_empty:
            return None
        reference = self._load_reference() or PlaybackReferenceState.initial(playlist, now_ms)
        state = self._compute(playlist, reference, now_ms)
        return anchor(
            state,
            now_ms,
            total_item_count=len(playlist),
            server_start_time=reference.server_start_time or now_ms,
        )

    def _reanchor(
        self,
        playlist: Playlist,
        previous: PlaybackReferenceState | None,
        now_ms: int,
    ) -> PlaybackReferenceState | None:
        """Carry ``previous`` over to an edited catalog and persist it.

        The same item keeps its offset at its new index. If it was removed,
        whatever now sits at its old index starts from the beginning.
        """
        if playlist.is_empty:
            reference = None
        elif previous is None:
            reference = PlaybackReferenceState.initial(playlist, now_ms)
        else:
            idx = playlist.index_of(previous.current_item_id)
            offset = previous.offset_at_reference
            if idx is None:
                idx = previous.current_index if previous.current_index < len(playlist) else 0
                offset = 0.0
            reference = PlaybackReferenceState(
                current_item_id=playlist[idx].id,
                current_index=idx,
                offset_at_reference=offset,
                reference_timestamp=now_ms,
                is_playing=previous.is_playing,
                total_item_count=len(playlist),
                server_start_time=previous.server_start_time,
            )
        self._save_reference(reference)
        return reference

    def _replace_playlist(self, playlist: Playlist, now_ms: int, previous: PlaybackReferenceState | None) -> None:
        """Write a whole new catalog and reset (or carry over) the reference."""
        self._save_playlist(playlist)
        if self.preserve_position_on_refresh and previous is not None:
            if playlist.index_of(previous.current_item_id) is not None:
                self._reanchor(playlist, previous, now_ms)
                return
        reference = PlaybackReferenceState.initial(playlist, now_ms) if not playlist.is_empty else None
        self._save_reference(reference)

    def _pull_catalog(self) -> Playlist:
        if self.content_source is None:
            raise ContentSourceError("no content source configured")
        playlist = playlist_from_events(self.content_source.list_playable_events())

        overrides = self._load_overrides()
        if self.prober is not None:
            found = self.prober.probe_missing(playlist.apply_overrides(overrides))
            if found:
                overrides.update(found)
                self.store.set_json(self.keys.duration_overrides, overrides)
                logger.info("durations_probed", count=len(found))
        return playlist.apply_overrides(overrides)

    def _lazy_initialize(self, now_ms: int) -> Playlist:
        """First read on an empty store: pull the catalog once."""
        if self.content_source is None:
            return Playlist()
        try:
            playlist = self._pull_catalog()
        except ContentSourceError as e:
            logger.error("catalog_initial_load_failed", error=str(e))
            return Playlist()
        self._replace_playlist(playlist, now_ms, None)
        logger.info("playlist_initialized", total_items=len(playlist))
        return playlist

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def current(self) -> ChannelSnapshot:
        """Compute the live state, persisting a lazy advance when needed."""
        now = self.clock.now_ms()
        playlist = self._load_playlist()
        if playlist is None:
            playlist = self._lazy_initialize(now)
        if playlist.is_empty:
            return ChannelSnapshot(NO_CONTENT, playlist, now, self.default_duration)

        reference = self._load_reference()
        if reference is None:
            reference = PlaybackReferenceState.initial(playlist, now)
            self._save_reference(reference)
            logger.info("reference_state_initialized", total_items=len(playlist))

        state = self._compute(playlist, reference, now)
        assert state.current_item is not None
        if (
            state.current_index != reference.current_index
            or state.current_item.id != reference.current_item_id
            or reference.total_item_count != len(playlist)
        ):
            advanced = anchor(
                state,
                now,
                total_item_count=len(playlist),
                server_start_time=reference.server_start_time or now,
            )
            self._save_reference(advanced)
            logger.info(
                "playback_advanced",
                from_index=reference.current_index,
                to_index=state.current_index,
                item_id=state.current_item.id,
            )
        else:
            self._touch()
        return ChannelSnapshot(state, playlist, now, self.default_duration)

    # ------------------------------------------------------------------
    # Administrative actions
    # ------------------------------------------------------------------

    def refresh(self) -> MutationResult:
        """Re-pull the catalog from the content source and restart playback.

        Raises:
            ContentSourceError: If the source is missing or fails.
        """
        now = self.clock.now_ms()
        playlist = self._pull_catalog()
        previous = None
        if self.preserve_position_on_refresh:
            previous = self._anchored_reference(self._load_playlist() or Playlist(), now)
        self._replace_playlist(playlist, now, previous)
        logger.info("playlist_refreshed", total_items=len(playlist))
        return MutationResult("Playlist refreshed", len(playlist))

    def set_playlist(self, entries: Any) -> MutationResult:
        """Replace the catalog with client-supplied entries.

        Entries missing a non-empty id, title or playableRef are dropped.

        Raises:
            ValidationError: If ``entries`` is not a list.
        """
        if not isinstance(entries, list):
            raise ValidationError("playlist must be a list of items")
        now = self.clock.now_ms()
        playlist = Playlist.from_list(entries).apply_overrides(self._load_overrides())
        previous = None
        if self.preserve_position_on_refresh:
            previous = self._anchored_reference(self._load_playlist() or Playlist(), now)
        self._replace_playlist(playlist, now, previous)
        logger.info("playlist_set", total_items=len(playlist), dropped=len(entries) - len(playlist))
        return MutationResult("Playlist updated", len(playlist))

    def add_item(self, entry: Any) -> MutationResult:
        """Append one item; an existing id is replaced and moves to the end.

        Raises:
            ValidationError: If id, title or playableRef is missing.
        """
        item = PlaylistItem.from_dict(entry) if isinstance(entry, Mapping) else None
        if item is None:
            raise ValidationError("item requires non-empty id, title and playableRef")
        overrides = self._load_overrides()
        if item.id in overrides:
            item = item.with_duration(overrides[item.id])

        now = self.clock.now_ms()
        playlist = self._load_playlist() or Playlist()
        previous = self._anchored_reference(playlist, now)
        updated = playlist.append(item)
        self._save_playlist(updated)
        self._reanchor(updated, previous, now)
        logger.info("playlist_item_added", item_id=item.id, total_items=len(updated))
        return MutationResult("Item added to playlist", len(updated), {"itemId": item.id})

    def remove_item(self, item_id: Any) -> MutationResult:
        """Remove an item by id. Removing an unknown id changes nothing.

        Raises:
            ValidationError: If ``item_id`` is empty.
        """
        if not isinstance(item_id, str) or not item_id.strip():
            raise ValidationError("itemId is required")
        item_id = item_id.strip()
        now = self.clock.now_ms()
        playlist = self._load_playlist() or Playlist()
        if playlist.index_of(item_id) is None:
            return MutationResult("Item not in playlist", len(playlist), {"itemId": item_id})

        previous = self._anchored_reference(playlist, now)
        updated = playlist.remove(item_id)
        self._save_playlist(updated)
        self._reanchor(updated, previous, now)
        logger.info("playlist_item_removed", item_id=item_id, total_items=len(updated))
        return MutationResult("Item removed from playlist", len(updated), {"itemId": item_id})

    def set_duration(self, item_id: Any, seconds: Any) -> MutationResult:
        """Record an item's true duration.

        The value is also kept as an override so later refreshes keep it.

        Raises:
            ValidationError: If ``item_id`` is empty or ``seconds`` is not positive.
            ItemNotFoundError: If the item is not in the catalog.
        """
        if not isinstance(item_id, str) or not item_id.strip():
            raise ValidationError("itemId is required")
        duration = coerce_duration(seconds)
        if duration is None:
            raise ValidationError("durationSeconds must be a positive number")
        item_id = item_id.strip()

        now = self.clock.now_ms()
        playlist = self._load_playlist() or Playlist()
        if playlist.index_of(item_id) is None:
            raise ItemNotFoundError(item_id)

        previous = self._anchored_reference(playlist, now)
        overrides = self._load_overrides()
        overrides[item_id] = duration
        self.store.set_json(self.keys.duration_overrides, overrides)

        updated = playlist.with_duration(item_id, duration)
        self._save_playlist(updated)
        self._reanchor(updated, previous, now)
        logger.info("duration_set", item_id=item_id, duration_seconds=duration)
        return MutationResult(
            f"Duration updated for item {item_id}",
            len(updated),
            {"itemId": item_id, "durationSeconds": duration},
        )

    def force_sync(
        self,
        *,
        item_id: str | None = None,
        index: int | None = None,
        offset_seconds: Any = 0,
    ) -> MutationResult:
        """Point the channel at an item and offset as of now.

        Raises:
            ValidationError: If neither target is given, the index is out of
                range, or the offset is negative or past the item's end.
            ItemNotFoundError: If ``item_id`` is not in the catalog.
        """
        if isinstance(offset_seconds, bool) or not isinstance(offset_seconds, (int, float)):
            raise ValidationError("offsetSeconds must be a number")
        if not math.isfinite(offset_seconds):
            raise ValidationError("offsetSeconds must be finite")
        if offset_seconds < 0:
            raise ValidationError("offsetSeconds must be non-negative")

        now = self.clock.now_ms()
        playlist = self._load_playlist() or Playlist()
        if item_id:
            target = playlist.index_of(item_id)
            if target is None:
                raise ItemNotFoundError(item_id)
        elif index is not None and not isinstance(index, bool):
            if not 0 <= index < len(playlist):
                raise ValidationError(f"index {index} out of range for {len(playlist)} items")
            target = index
        else:
            raise ValidationError("force-sync requires itemId or index")

        item = playlist[target]
        if offset_seconds >= item.effective_duration(self.default_duration):
            raise ValidationError("offsetSeconds is past the end of the item")

        previous = self._load_reference()
        reference = PlaybackReferenceState(
            current_item_id=item.id,
            current_index=target,
            offset_at_reference=float(offset_seconds),
            reference_timestamp=now,
            is_playing=previous.is_playing if previous else True,
            total_item_count=len(playlist),
            server_start_time=(previous.server_start_time if previous else None) or now,
        )
        self._save_reference(reference)
        logger.info("force_synced", item_id=item.id, index=target, offset_seconds=offset_seconds)
        return MutationResult(
            f"Synced to {item.id} at {int(offset_seconds)}s",
            len(playlist),
            {"itemId": item.id, "currentIndex": target, "offsetSeconds": int(offset_seconds)},
        )

    def pause(self) -> MutationResult:
        """Freeze the channel at its current position."""
        now = self.clock.now_ms()
        playlist = self._load_playlist() or Playlist()
        current = self._anchored_reference(playlist, now)
        if current is None:
            return MutationResult("Nothing to pause", 0, {"isPlaying": False})
        paused = anchor(
            self._compute(playlist, current, now),
            now,
            total_item_count=len(playlist),
            server_start_time=current.server_start_time,
            is_playing=False,
        )
        self._save_reference(paused)
        logger.info("playback_paused", item_id=paused.current_item_id, offset=paused.offset_at_reference)
        return MutationResult("Playback paused", len(playlist), {"isPlaying": False})

    def play(self) -> MutationResult:
        """Resume from the frozen offset with a fresh reference timestamp."""
        now = self.clock.now_ms()
        playlist = self._load_playlist() or Playlist()
        if playlist.is_empty:
            return MutationResult("Nothing to play", 0, {"isPlaying": False})
        current = self._anchored_reference(playlist, now)
        assert current is not None
        resumed = PlaybackReferenceState(
            current_item_id=current.current_item_id,
            current_index=current.current_index,
            offset_at_reference=current.offset_at_reference,
            reference_timestamp=now,
            is_playing=True,
            total_item_count=len(playlist),
            server_start_time=current.server_start_time,
        )
        self._save_reference(resumed)
        logger.info("playback_resumed", item_id=resumed.current_item_id, offset=resumed.offset_at_reference)
        return MutationResult("Playback resumed", len(playlist), {"isPlaying": True})

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    def status(self, *, check_store: bool = False) -> dict[str, Any]:
        """Operator view of store health. Never shown to viewers."""
        now = self.clock.now_ms()
        reference = self._load_reference()
        playlist = self._load_playlist()
        start = reference.server_start_time if reference else None
        data: dict[str, Any] = {
            "channelId": self.keys.channel_id,
            "backend": self.store.backend_name,
            "configured": self.store.configured,
            "degraded": self.store.degraded,
            "initialized": reference is not None,
            "isPlaying": reference.is_playing if reference else False,
            "totalItems": len(playlist) if playlist is not None else 0,
            "uptimeSeconds": max(0, (now - start) // 1000) if start else 0,
            "serverTime": ms_to_iso(now),
        }
        if check_store:
            data["storeCheck"] = self.store.check(self.keys.probe)
        return data
