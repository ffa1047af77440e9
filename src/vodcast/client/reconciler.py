"""
ClientReconciler: keep a viewer's local position in step with the channel.

Each poll measures the round trip, estimates how far the server clock is
ahead of the local clock, and jumps the local position to the corrected
server position. Between polls the position is extrapolated from the
local clock alone.

With ``t0``/``t1`` the local send/receive times and ``serverTime`` the
server's clock when it computed ``offsetSeconds``::

    latency      = (t1 - t0) / 2
    clock_offset = (serverTime + latency) - t1
    position(t)  = offsetSeconds + (t + clock_offset - serverTime)

so at ``t = t1`` the position is ``offsetSeconds + latency``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import requests

from vodcast.infra.exceptions import ServerUnavailableError
from vodcast.runtime.clock import iso_to_seconds

_logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 15.0


@dataclass(frozen=True)
class ClientPlaybackState:
    """One reconciled poll result."""

    item: dict[str, Any] | None
    index: int
    position: float
    duration: float
    server_time: float
    clock_offset: float
    round_trip: float
    is_playing: bool
    total_items: int
    next_item: dict[str, Any] | None = None

    @property
    def item_id(self) -> str | None:
        return self.item.get("id") if self.item else None

    def position_at(self, now: float) -> float:
        """Extrapolated position at local time ``now``."""
        if self.item is None:
            return 0.0
        if not self.is_playing:
            return self.position
        return max(0.0, self.position + (now + self.clock_offset - self.server_time))


class ClientReconciler:
    """Polls ``/api/stream/current`` and tracks the channel position."""

    def __init__(
        self,
        base_url: str,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = 5.0,
        session: requests.Session | None = None,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._session = session or requests.Session()
        self._time = time_fn
        self.state: ClientPlaybackState | None = None
        self.catalog: list[dict[str, Any]] | None = None

    # ------------------------------------------------------------------
    # Pure reconciliation
    # ------------------------------------------------------------------

    @staticmethod
    def apply_response(payload: Mapping[str, Any], t0: float, t1: float) -> ClientPlaybackState:
        """Turn a query response and its timing into a ClientPlaybackState."""
        round_trip = max(0.0, t1 - t0)
        server_time = iso_to_seconds(payload["serverTime"])
        clock_offset = (server_time + round_trip / 2) - t1

        offset = float(payload.get("offsetSeconds") or 0)
        remaining = float(payload.get("remainingSeconds") or 0)
        return ClientPlaybackState(
            item=payload.get("currentItem"),
            index=int(payload.get("currentIndex", -1)),
            position=offset,
            duration=offset + remaining,
            server_time=server_time,
            clock_offset=clock_offset,
            round_trip=round_trip,
            is_playing=bool(payload.get("isPlaying")),
            total_items=int(payload.get("totalItems") or 0),
            next_item=payload.get("nextItem"),
        )

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            resp = self._session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            raise ServerUnavailableError(f"poll failed: {e}") from e
        except ValueError as e:
            raise ServerUnavailableError(f"poll returned non-JSON: {e}") from e

    def sync(self) -> ClientPlaybackState:
        """Poll once and jump-correct the local state.

        Raises:
            ServerUnavailableError: If the server cannot be reached. The
                previous state is kept.
        """
        want_catalog = self.catalog is None
        t0 = self._time()
        payload = self._get("/api/stream/current", {"include_playlist": "true"} if want_catalog else None)
        t1 = self._time()

        previous = self.state
        state = self.apply_response(payload, t0, t1)
        self.state = state

        if isinstance(payload.get("playlist"), list):
            self.catalog = payload["playlist"]
        elif previous is not None and previous.item_id != state.item_id:
            _logger.info("Item changed from %s to %s, refreshing catalog", previous.item_id, state.item_id)
            self.refresh_catalog()
        return state

    resync_now = sync

    def refresh_catalog(self) -> list[dict[str, Any]]:
        """Re-request the full catalog from the server."""
        payload = self._get("/api/stream/playlist")
        self.catalog = list(payload.get("playlist") or [])
        return self.catalog

    def playable_ref(self) -> str | None:
        """Resolve the current item's playable reference, preferring the catalog."""
        if self.state is None or self.state.item is None:
            return None
        for entry in self.catalog or []:
            if entry.get("id") == self.state.item_id:
                return entry.get("playableRef")
        return self.state.item.get("playableRef")

    # ------------------------------------------------------------------
    # Extrapolation
    # ------------------------------------------------------------------

    def position(self, now: float | None = None) -> float:
        """Local estimate of the channel position, capped at the item's end."""
        if self.state is None:
            return 0.0
        now = self._time() if now is None else now
        return min(self.state.position_at(now), self.state.duration)

    def needs_buffering(self, now: float | None = None) -> bool:
        """True once the current item should already have ended locally."""
        if self.state is None or self.state.item is None or not self.state.is_playing:
            return False
        now = self._time() if now is None else now
        return self.state.position_at(now) >= self.state.duration

    def seconds_until_next_poll(self, now: float | None = None) -> float:
        """Poll interval, shortened so an item boundary is not missed."""
        if self.state is None or self.state.item is None or not self.state.is_playing:
            return self.poll_interval
        now = self._time() if now is None else now
        until_end = self.state.duration - self.state.position_at(now)
        return max(0.5, min(self.poll_interval, until_end))

    def run(
        self,
        stop_event: threading.Event,
        on_update: Callable[[ClientReconciler], None] | None = None,
    ) -> None:
        """Poll until ``stop_event`` is set. Failed polls keep the last state."""
        while not stop_event.is_set():
            try:
                self.sync()
            except ServerUnavailableError as e:
                _logger.warning("Sync failed, extrapolating from last state: %s", e)
            if on_update is not None:
                on_update(self)
            stop_event.wait(self.seconds_until_next_poll())
