"""Key layout of the shared state store.

Every key the channel reads or writes is built here; nothing else
hard-codes key strings.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ChannelKeys:
    """Keys for one channel under a namespace prefix."""

    prefix: str = "streaming"
    channel_id: str = "main"

    def _key(self, name: str) -> str:
        return f"{self.prefix}:{self.channel_id}:{name}"

    # PlaybackReferenceState as one JSON object
    @property
    def sync_state(self) -> str:
        return self._key("sync-state")

    # Resolved catalog: list of {id, title, playableRef, durationSeconds}
    @property
    def playlist(self) -> str:
        return self._key("playlist")

    # {item_id: seconds} learned from set-duration or probing
    @property
    def duration_overrides(self) -> str:
        return self._key("duration-overrides")

    # Connectivity check scratch key
    @property
    def probe(self) -> str:
        return self._key("probe")
