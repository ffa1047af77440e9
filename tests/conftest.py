"""
Global test configuration for vodcast.

This module provides global pytest configuration and fixtures.
"""

import sys
from pathlib import Path

import pytest

# Ensure the project src directory is importable without relying on external environment.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from vodcast.domain.playlist import Playlist, PlaylistItem  # noqa: E402
from vodcast.runtime.clock import SteppedClock  # noqa: E402
from vodcast.runtime.content_source import StaticContentSource  # noqa: E402
from vodcast.runtime.state_store import InMemoryBackend, SharedStateStore  # noqa: E402
from vodcast.runtime.sync_coordinator import SyncCoordinator  # noqa: E402

# 2026-01-01T00:00:00Z
EPOCH_MS = 1_767_225_600_000


class FakeMonotonic:
    """Manually advanced monotonic clock for TTL and retry tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


EVENTS = [
    {"id": "a", "title": "Opening Keynote", "playableRef": "https://media.example/a.mp4", "durationSeconds": 100},
    {"id": "b", "title": "Panel", "playableRef": "https://media.example/b.mp4", "durationSeconds": 200},
    {"id": "c", "title": "Closing", "playableRef": "https://media.example/c.mp4", "durationSeconds": 50},
]


@pytest.fixture
def clock():
    return SteppedClock(EPOCH_MS)


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def memory_store(monotonic):
    """Unconfigured store: everything is served from process memory."""
    return SharedStateStore(None, local=InMemoryBackend(monotonic), monotonic_fn=monotonic)


@pytest.fixture
def primary(monotonic):
    return InMemoryBackend(monotonic)


@pytest.fixture
def shared_store(primary, monotonic):
    """Store with a (fake) configured primary backend."""
    return SharedStateStore(primary, local=InMemoryBackend(monotonic), monotonic_fn=monotonic)


@pytest.fixture
def source():
    return StaticContentSource(EVENTS)


@pytest.fixture
def coordinator(shared_store, source, clock, monotonic):
    return SyncCoordinator(shared_store, content_source=source, clock=clock, monotonic_fn=monotonic)


@pytest.fixture
def playlist():
    return Playlist(
        [
            PlaylistItem("a", "Opening Keynote", "https://media.example/a.mp4", 100),
            PlaylistItem("b", "Panel", "https://media.example/b.mp4", 200),
            PlaylistItem("c", "Closing", "https://media.example/c.mp4", 50),
        ]
    )
