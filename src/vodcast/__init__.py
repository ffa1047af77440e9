"""
vodcast: an always-on virtual channel built from pre-recorded videos.

Every viewer who tunes in sees the same item at the same offset. Position is
derived from wall-clock time and a shared reference epoch.
"""

__version__ = "0.1.0"
