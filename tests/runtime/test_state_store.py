"""
Shared state store tests.

Backends are in-memory or mocked; no redis server and no network.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import redis
import requests

from vodcast.infra.exceptions import MalformedStateError, StoreUnavailableError
from vodcast.infra.settings import Settings
from vodcast.runtime.state_store import (
    InMemoryBackend,
    RedisBackend,
    RestKVBackend,
    SharedStateStore,
    build_backend,
)
from vodcast.runtime.store_keys import ChannelKeys


def test_memory_backend_expires_keys(monotonic):
    backend = InMemoryBackend(monotonic)
    backend.set("k", "v", 10)
    monotonic.advance(9)
    assert backend.get("k") == "v"
    monotonic.advance(1)
    assert backend.get("k") is None


def test_memory_backend_expire_extends_ttl(monotonic):
    backend = InMemoryBackend(monotonic)
    backend.set("k", "v", 10)
    monotonic.advance(8)
    backend.expire("k", 10)
    monotonic.advance(8)
    assert backend.get("k") == "v"


def test_unconfigured_store_is_degraded_but_works(memory_store):
    assert not memory_store.configured
    assert memory_store.degraded
    memory_store.set_json("k", {"a": 1})
    assert memory_store.get_json("k") == {"a": 1}


def test_writes_reach_primary(shared_store, primary):
    shared_store.set_json("k", [1, 2])
    assert primary.get("k") == "[1,2]"
    assert not shared_store.degraded


def test_primary_failure_falls_back_to_last_seen_value(shared_store, primary):
    shared_store.set("k", "v1")
    primary.available = False

    assert shared_store.get("k") == "v1"
    assert shared_store.degraded

    shared_store.set("k", "v2")
    assert shared_store.get("k") == "v2"


def test_degraded_store_retries_primary_after_interval(primary, monotonic):
    store = SharedStateStore(primary, retry_interval=30, local=InMemoryBackend(monotonic), monotonic_fn=monotonic)
    primary.fail_next = True
    store.set("k", "local-only")
    assert store.degraded
    assert primary.get("k") is None

    # Within the retry window the primary is not contacted.
    store.set("k", "still-local")
    assert primary.get("k") is None

    monotonic.advance(30)
    store.set("k", "back")
    assert not store.degraded
    assert primary.get("k") == "back"


def test_reads_mirror_primary_into_local(shared_store, primary):
    primary.set("k", "from-another-instance", 60)
    assert shared_store.get("k") == "from-another-instance"
    primary.available = False
    assert shared_store.get("k") == "from-another-instance"


def test_get_json_raises_on_corrupt_value(shared_store):
    shared_store.set("k", "{not json")
    with pytest.raises(MalformedStateError):
        shared_store.get_json("k")


def test_every_write_refreshes_ttl(primary, monotonic):
    store = SharedStateStore(primary, ttl_seconds=100, local=InMemoryBackend(monotonic), monotonic_fn=monotonic)
    store.set("k", "v")
    monotonic.advance(90)
    store.touch("k")
    monotonic.advance(90)
    assert store.get("k") == "v"
    monotonic.advance(11)
    assert store.get("k") is None


def test_check_round_trips_through_primary(shared_store, memory_store):
    assert shared_store.check(ChannelKeys().probe) is True
    assert memory_store.check(ChannelKeys().probe) is False


def test_check_reports_failure(shared_store, primary):
    primary.available = False
    assert shared_store.check("probe") is False


def test_channel_keys_layout():
    keys = ChannelKeys(prefix="streaming", channel_id="main")
    assert keys.sync_state == "streaming:main:sync-state"
    assert keys.playlist == "streaming:main:playlist"


class TestRedisBackend:
    def setup_method(self):
        self.client = MagicMock()
        self.backend = RedisBackend("redis://localhost:6379/0", client=self.client)

    def test_set_passes_ttl(self):
        self.backend.set("k", "v", 60)
        self.client.set.assert_called_once_with("k", "v", ex=60)

    def test_get_decodes_bytes(self):
        self.client.get.return_value = b"value"
        assert self.backend.get("k") == "value"

    def test_redis_errors_become_unavailable(self):
        self.client.get.side_effect = redis.TimeoutError("timed out")
        with pytest.raises(StoreUnavailableError):
            self.backend.get("k")


class TestRestKVBackend:
    def setup_method(self):
        self.session = MagicMock()
        self.backend = RestKVBackend("https://kv.example/", "secret", timeout=1.0, session=self.session)

    def _respond(self, payload, status=200):
        resp = MagicMock()
        resp.status_code = status
        resp.json.return_value = payload
        self.session.post.return_value = resp

    def test_set_sends_command_array_with_bearer_token(self):
        self._respond({"result": "OK"})
        self.backend.set("k", "v", 60)
        self.session.post.assert_called_once_with(
            "https://kv.example",
            json=["SET", "k", "v", "EX", "60"],
            headers={"Authorization": "Bearer secret"},
            timeout=1.0,
        )

    def test_get_returns_result(self):
        self._respond({"result": "v"})
        assert self.backend.get("k") == "v"
        self._respond({"result": None})
        assert self.backend.get("k") is None

    def test_error_payload_raises(self):
        self._respond({"error": "WRONGPASS"}, status=401)
        with pytest.raises(StoreUnavailableError):
            self.backend.get("k")

    def test_transport_error_raises(self):
        self.session.post.side_effect = requests.ConnectionError("down")
        with pytest.raises(StoreUnavailableError):
            self.backend.get("k")

    def test_store_falls_back_when_rest_backend_fails(self, monotonic):
        self.session.post.side_effect = requests.Timeout("slow")
        store = SharedStateStore(self.backend, local=InMemoryBackend(monotonic), monotonic_fn=monotonic)
        store.set("k", "v")
        assert store.get("k") == "v"
        assert store.degraded
        assert store.backend_name == "rest"


def test_build_backend_prefers_redis():
    cfg = Settings(REDIS_URL="redis://localhost:6379/0", KV_REST_URL="https://kv", KV_REST_TOKEN="t")
    assert isinstance(build_backend(cfg), RedisBackend)
    cfg = Settings(KV_REST_URL="https://kv", KV_REST_TOKEN="t")
    assert isinstance(build_backend(cfg), RestKVBackend)
    assert build_backend(Settings()) is None
