"""
Playlist model tests.

Validation on the way in, durations, and immutable edits.
"""

from __future__ import annotations

from vodcast.domain.playlist import (
    DEFAULT_DURATION_SECONDS,
    Playlist,
    PlaylistItem,
    coerce_duration,
)


def test_from_dict_accepts_url_and_duration_aliases():
    item = PlaylistItem.from_dict({"id": "x", "title": "X", "url": "u", "duration": 42})
    assert item == PlaylistItem("x", "X", "u", 42)


def test_from_dict_rejects_blank_required_fields():
    assert PlaylistItem.from_dict({"id": "", "title": "X", "playableRef": "u"}) is None
    assert PlaylistItem.from_dict({"id": "x", "title": "  ", "playableRef": "u"}) is None
    assert PlaylistItem.from_dict({"id": "x", "title": "X"}) is None
    assert PlaylistItem.from_dict("not a mapping") is None


def test_coerce_duration():
    assert coerce_duration(90) == 90
    assert coerce_duration("90.7") == 90
    assert coerce_duration(0) is None
    assert coerce_duration(-5) is None
    assert coerce_duration(True) is None
    assert coerce_duration("abc") is None
    assert coerce_duration(None) is None


def test_from_list_drops_invalid_entries_silently():
    playlist = Playlist.from_list(
        [
            {"id": "a", "title": "A", "playableRef": "ra"},
            {"id": "b", "title": "", "playableRef": "rb"},
            42,
            {"id": "c", "title": "C", "playableRef": "rc", "durationSeconds": 30},
        ]
    )
    assert [item.id for item in playlist] == ["a", "c"]


def test_duplicate_ids_later_entry_wins_and_takes_later_position():
    playlist = Playlist(
        [
            PlaylistItem("a", "A1", "r1"),
            PlaylistItem("b", "B", "r2"),
            PlaylistItem("a", "A2", "r3"),
        ]
    )
    assert [item.id for item in playlist] == ["b", "a"]
    assert playlist.get("a").title == "A2"


def test_unknown_duration_uses_default(playlist):
    assert Playlist([PlaylistItem("z", "Z", "rz")]).total_duration() == DEFAULT_DURATION_SECONDS
    assert playlist.durations() == [100, 200, 50]
    assert playlist.total_duration() == 350


def test_edits_return_new_playlists(playlist):
    appended = playlist.append(PlaylistItem("d", "D", "rd", 10))
    removed = playlist.remove("b")
    retimed = playlist.with_duration("c", 75)

    assert len(playlist) == 3
    assert [item.id for item in appended] == ["a", "b", "c", "d"]
    assert [item.id for item in removed] == ["a", "c"]
    assert retimed.get("c").duration_seconds == 75
    assert playlist.get("c").duration_seconds == 50


def test_apply_overrides_only_touches_known_ids(playlist):
    updated = playlist.apply_overrides({"b": 210, "missing": 5})
    assert updated.durations() == [100, 210, 50]


def test_to_list_round_trips_through_from_list(playlist):
    assert Playlist.from_list(playlist.to_list()) == playlist


def test_public_dict_hides_duration():
    item = PlaylistItem("a", "A", "ra", 100)
    assert item.to_public_dict() == {"id": "a", "title": "A", "playableRef": "ra"}
    assert item.to_dict()["durationSeconds"] == 100


def test_non_finite_durations_are_unusable():
    assert coerce_duration(float("inf")) is None
    assert coerce_duration(float("nan")) is None
    assert coerce_duration("Infinity") is None
    assert coerce_duration("1e999") is None


def test_non_finite_duration_falls_back_to_default():
    playlist = Playlist.from_list(
        [
            {"id": "a", "title": "A", "playableRef": "ra", "durationSeconds": float("inf")},
            {"id": "b", "title": "B", "playableRef": "rb", "durationSeconds": 30},
        ]
    )
    assert [item.id for item in playlist] == ["a", "b"]
    assert playlist.durations() == [DEFAULT_DURATION_SECONDS, 30]
