"""
Content sources: where the catalog comes from.

The channel only needs ``list_playable_events()`` from the external
datastore: a list of loose event mappings. Conversion to PlaylistItem
happens here so every source maps events the same way.

Event fields understood:
    id, title                         required
    playableRef | url | youtube_url | archive_url
                                      first non-empty wins; events without
                                      one are skipped
    durationSeconds                   explicit duration
    durationMinutes | duration        minutes, converted to seconds
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

import requests
import yaml

from vodcast.domain.playlist import Playlist, PlaylistItem, coerce_duration
from vodcast.infra.exceptions import ContentSourceError
from vodcast.infra.settings import Settings

_logger = logging.getLogger(__name__)

_REF_FIELDS = ("playableRef", "url", "youtube_url", "archive_url")
_LIST_FIELDS = ("events", "items", "data")


class ContentSource(Protocol):
    """External catalog provider."""

    def list_playable_events(self) -> list[dict[str, Any]]:
        """Return raw events. Raises ContentSourceError on failure."""
        ...


def event_to_item(event: Mapping[str, Any]) -> PlaylistItem | None:
    """Map one upstream event to a PlaylistItem, or None if unplayable."""
    if not isinstance(event, Mapping):
        return None
    ref = next((str(event[f]).strip() for f in _REF_FIELDS if event.get(f)), "")
    if not ref:
        return None

    seconds = coerce_duration(event.get("durationSeconds"))
    if seconds is None:
        minutes = event.get("durationMinutes", event.get("duration"))
        seconds = coerce_duration(float(minutes) * 60) if _is_number(minutes) else None

    return PlaylistItem.from_dict(
        {
            "id": event.get("id"),
            "title": event.get("title"),
            "playableRef": ref,
            "durationSeconds": seconds,
        }
    )


def _is_number(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def playlist_from_events(events: Iterable[Mapping[str, Any]]) -> Playlist:
    """Build a playlist from upstream events in their given order."""
    items = []
    skipped = 0
    for event in events:
        item = event_to_item(event)
        if item is None:
            skipped += 1
            continue
        items.append(item)
    if skipped:
        _logger.info("Skipped %d events without a playable reference", skipped)
    return Playlist(items)


def _unwrap(payload: Any, origin: str) -> list[dict[str, Any]]:
    if isinstance(payload, Mapping):
        for field in _LIST_FIELDS:
            if isinstance(payload.get(field), list):
                payload = payload[field]
                break
    if not isinstance(payload, list):
        raise ContentSourceError(f"{origin}: expected a list of events")
    return [e for e in payload if isinstance(e, Mapping)]


class StaticContentSource:
    """In-memory source, mainly for tests and fixed deployments."""

    def __init__(self, events: Iterable[Mapping[str, Any]] = ()) -> None:
        self.events = [dict(e) for e in events]

    def list_playable_events(self) -> list[dict[str, Any]]:
        return [dict(e) for e in self.events]


class FileContentSource:
    """Catalog read from a JSON or YAML file on every pull."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    def list_playable_events(self) -> list[dict[str, Any]]:
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                payload = yaml.safe_load(f)
        except OSError as e:
            raise ContentSourceError(f"cannot read catalog {self._path}: {e}") from e
        except yaml.YAMLError as e:
            raise ContentSourceError(f"cannot parse catalog {self._path}: {e}") from e
        return _unwrap(payload or [], str(self._path))


class HttpContentSource:
    """Catalog pulled from an HTTP endpoint returning JSON."""

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._session = session or requests.Session()
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}

    def list_playable_events(self) -> list[dict[str, Any]]:
        try:
            resp = self._session.get(self._url, headers=self._headers, timeout=self._timeout)
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as e:
            raise ContentSourceError(f"catalog request failed: {e}") from e
        except ValueError as e:
            raise ContentSourceError(f"catalog response is not JSON: {e}") from e
        return _unwrap(payload, self._url)


def build_content_source(cfg: Settings) -> ContentSource | None:
    if cfg.content_source_path:
        return FileContentSource(cfg.content_source_path)
    if cfg.content_source_url:
        return HttpContentSource(
            cfg.content_source_url,
            token=cfg.content_source_token,
            timeout=cfg.content_source_timeout_seconds,
        )
    return None
