"""
Domain types for vodcast.
"""

from .playlist import DEFAULT_DURATION_SECONDS, Playlist, PlaylistItem

__all__ = ["DEFAULT_DURATION_SECONDS", "Playlist", "PlaylistItem"]
