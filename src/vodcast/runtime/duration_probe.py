"""
Duration probing with FFprobe.

Finds the true length of items that only have the default duration, so
the channel does not sit on a one-hour placeholder for a short video.
Embedded-player references (YouTube) cannot be probed and are skipped.
"""

from __future__ import annotations

import json
import logging
import math
import re
import subprocess
from typing import Callable

from vodcast.domain.playlist import Playlist
from vodcast.infra.exceptions import ProbeError

_logger = logging.getLogger(__name__)

_UNPROBEABLE_RE = re.compile(r"(?:youtube\.com|youtu\.be)/", re.IGNORECASE)


def probe_duration_seconds(ref: str, *, ffprobe_path: str = "ffprobe", timeout: float = 20.0) -> int:
    """Return the media length of ``ref`` in whole seconds (rounded up).

    Raises:
        ProbeError: If ffprobe is missing, times out, fails, or reports no
            usable duration.
    """
    cmd = [
        ffprobe_path,
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "json",
        ref,
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise ProbeError(f"ffprobe not found at {ffprobe_path!r}") from e
    except subprocess.TimeoutExpired as e:
        raise ProbeError(f"ffprobe timed out after {timeout}s") from e

    if result.returncode != 0:
        raise ProbeError(f"ffprobe failed: {result.stderr.strip()}")

    try:
        data = json.loads(result.stdout)
        duration = float(data["format"]["duration"])
    except (ValueError, KeyError, TypeError) as e:
        raise ProbeError(f"ffprobe output has no duration: {e}") from e

    if not math.isfinite(duration) or duration <= 0:
        raise ProbeError(f"ffprobe reported duration {duration}")
    return int(math.ceil(duration))


class DurationProber:
    """Probe every item of a playlist that has no explicit duration."""

    def __init__(
        self,
        *,
        ffprobe_path: str = "ffprobe",
        timeout: float = 20.0,
        probe_fn: Callable[..., int] = probe_duration_seconds,
    ) -> None:
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout
        self._probe = probe_fn

    def probe_missing(self, playlist: Playlist) -> dict[str, int]:
        """Return ``{item_id: seconds}`` for items probed successfully."""
        found: dict[str, int] = {}
        for item in playlist:
            if item.duration_seconds is not None:
                continue
            if _UNPROBEABLE_RE.search(item.playable_ref):
                continue
            try:
                found[item.id] = self._probe(
                    item.playable_ref, ffprobe_path=self.ffprobe_path, timeout=self.timeout
                )
            except ProbeError as e:
                _logger.warning("Duration probe failed for %s: %s", item.id, e)
        return found
