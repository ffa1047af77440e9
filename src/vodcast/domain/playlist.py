"""
Playlist model: the ordered catalog the channel loops over.

Insertion order is playback order. A Playlist is an immutable value; every
edit returns a new Playlist so the whole catalog can be written to the shared
store as a single value.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Iterable, Iterator, Mapping

DEFAULT_DURATION_SECONDS = 3600


def coerce_duration(value: Any) -> int | None:
    """Return a positive whole-second duration, or None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    seconds = int(number)
    return seconds if seconds > 0 else None


@dataclass(frozen=True)
class PlaylistItem:
    """One playable entry of the channel.

    ``playable_ref`` is opaque here; the media layer resolves it.
    ``duration_seconds`` of None means "unknown, use the default".
    """

    id: str
    title: str
    playable_ref: str
    duration_seconds: int | None = None

    def effective_duration(self, default: int = DEFAULT_DURATION_SECONDS) -> int:
        return self.duration_seconds or default

    def with_duration(self, seconds: int) -> PlaylistItem:
        return replace(self, duration_seconds=seconds)

    def to_public_dict(self) -> dict[str, Any]:
        """Shape exposed to viewers."""
        return {"id": self.id, "title": self.title, "playableRef": self.playable_ref}

    def to_dict(self) -> dict[str, Any]:
        data = self.to_public_dict()
        data["durationSeconds"] = self.duration_seconds
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlaylistItem | None:
        """Build an item from a loose mapping.

        Accepts ``playableRef`` or ``url``, and ``durationSeconds`` or
        ``duration``. Returns None if id, title or playable reference is
        missing or blank.
        """
        if not isinstance(data, Mapping):
            return None
        item_id = _clean(data.get("id"))
        title = _clean(data.get("title"))
        ref = _clean(data.get("playableRef") or data.get("url"))
        if not item_id or not title or not ref:
            return None
        duration = coerce_duration(data.get("durationSeconds", data.get("duration")))
        return cls(id=item_id, title=title, playable_ref=ref, duration_seconds=duration)


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class Playlist:
    """Ordered, duplicate-free sequence of PlaylistItem."""

    __slots__ = ("_items", "_index")

    def __init__(self, items: Iterable[PlaylistItem] = ()) -> None:
        # Later duplicates win and take the later position.
        by_id: dict[str, PlaylistItem] = {}
        for item in items:
            by_id.pop(item.id, None)
            by_id[item.id] = item
        self._items: tuple[PlaylistItem, ...] = tuple(by_id.values())
        self._index = {item.id: i for i, item in enumerate(self._items)}

    # ------------------------------------------------------------------
    # Sequence protocol
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[PlaylistItem]:
        return iter(self._items)

    def __getitem__(self, index: int) -> PlaylistItem:
        return self._items[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Playlist):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"Playlist({len(self._items)} items)"

    @property
    def items(self) -> tuple[PlaylistItem, ...]:
        return self._items

    @property
    def is_empty(self) -> bool:
        return not self._items

    def index_of(self, item_id: str) -> int | None:
        return self._index.get(item_id)

    def get(self, item_id: str) -> PlaylistItem | None:
        idx = self._index.get(item_id)
        return None if idx is None else self._items[idx]

    # ------------------------------------------------------------------
    # Durations
    # ------------------------------------------------------------------

    def durations(self, default: int = DEFAULT_DURATION_SECONDS) -> list[int]:
        return [item.effective_duration(default) for item in self._items]

    def total_duration(self, default: int = DEFAULT_DURATION_SECONDS) -> int:
        return sum(self.durations(default))

    # ------------------------------------------------------------------
    # Edits (each returns a new Playlist)
    # ------------------------------------------------------------------

    def append(self, item: PlaylistItem) -> Playlist:
        return Playlist((*self._items, item))

    def remove(self, item_id: str) -> Playlist:
        return Playlist(item for item in self._items if item.id != item_id)

    def with_duration(self, item_id: str, seconds: int) -> Playlist:
        return Playlist(
            item.with_duration(seconds) if item.id == item_id else item
            for item in self._items
        )

    def apply_overrides(self, overrides: Mapping[str, int]) -> Playlist:
        """Return a copy with known durations from ``overrides`` applied."""
        if not overrides:
            return self
        return Playlist(
            item.with_duration(overrides[item.id]) if item.id in overrides else item
            for item in self._items
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_list(self) -> list[dict[str, Any]]:
        return [item.to_dict() for item in self._items]

    @classmethod
    def from_list(cls, entries: Iterable[Any]) -> Playlist:
        """Build a playlist, silently dropping entries that fail validation."""
        items = []
        for entry in entries:
            item = PlaylistItem.from_dict(entry) if isinstance(entry, Mapping) else None
            if item is not None:
                items.append(item)
        return cls(items)
