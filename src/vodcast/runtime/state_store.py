"""Shared state store: persistence for the channel's reference and catalog.

Values are whole JSON documents written under a single key each, so a
write is atomic per value. Every write refreshes the key's TTL.

Backends:
    InMemoryBackend   process-local, TTL-aware (tests, degraded mode)
    RedisBackend      redis protocol via redis-py
    RestKVBackend     HTTP command protocol (Upstash-style REST)

SharedStateStore wraps a primary backend with a process-local fallback.
When the primary is unconfigured, times out or errors, calls are served
from local memory and the store reports ``degraded``. Callers never see
the backend's failure.
"""

from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Protocol, TypeVar

import redis
import requests

from vodcast.infra.exceptions import MalformedStateError, StoreUnavailableError
from vodcast.infra.logging import get_logger
from vodcast.infra.settings import Settings

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 86400
CHECK_TTL_SECONDS = 10


class StoreBackend(Protocol):
    """Minimal key-value contract the channel needs from a backend.

    Implementations raise StoreUnavailableError on any transport failure.
    """

    name: str

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def expire(self, key: str, ttl_seconds: int) -> None:
        ...


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class InMemoryBackend:
    """Process-local backend with per-key expiry.

    Thread-safe. Set fail_next=True to simulate one transport failure in
    tests.
    """

    name = "memory"

    def __init__(self, monotonic_fn: Callable[[], float] = time.monotonic) -> None:
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._monotonic = monotonic_fn
        self.fail_next: bool = False
        self.available: bool = True

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailableError("memory backend marked unavailable")
        if self.fail_next:
            self.fail_next = False
            raise StoreUnavailableError("memory backend failure injected")

    def get(self, key: str) -> str | None:
        with self._lock:
            self._check()
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._monotonic() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._check()
            self._data[key] = (value, self._monotonic() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._check()
            self._data.pop(key, None)

    def expire(self, key: str, ttl_seconds: int) -> None:
        with self._lock:
            self._check()
            entry = self._data.get(key)
            if entry is not None:
                self._data[key] = (entry[0], self._monotonic() + ttl_seconds)


class RedisBackend:
    """Backend speaking the redis protocol.

    Socket connect and read timeouts are both bounded by ``timeout``.
    """

    name = "redis"

    def __init__(self, url: str, *, timeout: float = 1.0, client: Any = None) -> None:
        self._client = client or redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )

    def _run(self, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except redis.RedisError as e:
            raise StoreUnavailableError(f"redis: {e}") from e

    def get(self, key: str) -> str | None:
        value = self._run(lambda: self._client.get(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._run(lambda: self._client.set(key, value, ex=ttl_seconds))

    def delete(self, key: str) -> None:
        self._run(lambda: self._client.delete(key))

    def expire(self, key: str, ttl_seconds: int) -> None:
        self._run(lambda: self._client.expire(key, ttl_seconds))


class RestKVBackend:
    """Backend for HTTP key-value services using the REST command protocol.

    Each call POSTs the command as a JSON array (``["SET", key, value, "EX",
    ttl]``) with a bearer token and reads ``{"result": ...}`` or
    ``{"error": ...}`` back.
    """

    name = "rest"

    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout: float = 1.0,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._headers = {"Authorization": f"Bearer {token}"}

    def _command(self, *args: Any) -> Any:
        try:
            resp = self._session.post(
                self._url,
                json=[str(a) for a in args],
                headers=self._headers,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise StoreUnavailableError(f"rest kv: {e}") from e

        try:
            payload = resp.json()
        except ValueError as e:
            raise StoreUnavailableError(f"rest kv: non-JSON response (HTTP {resp.status_code})") from e

        if resp.status_code >= 400 or (isinstance(payload, dict) and payload.get("error")):
            detail = payload.get("error") if isinstance(payload, dict) else payload
            raise StoreUnavailableError(f"rest kv: HTTP {resp.status_code}: {detail}")
        if not isinstance(payload, dict):
            raise StoreUnavailableError("rest kv: unexpected response shape")
        return payload.get("result")

    def get(self, key: str) -> str | None:
        result = self._command("GET", key)
        return None if result is None else str(result)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._command("SET", key, value, "EX", ttl_seconds)

    def delete(self, key: str) -> None:
        self._command("DEL", key)

    def expire(self, key: str, ttl_seconds: int) -> None:
        self._command("EXPIRE", key, ttl_seconds)


# ---------------------------------------------------------------------------
# Store with local fallback
# ---------------------------------------------------------------------------


class SharedStateStore:
    """Primary backend plus process-local fallback.

    The local backend mirrors every value this process reads from or
    writes to the primary, so an outage continues from the last value this
    instance saw. After a primary failure the primary is skipped for
    ``retry_interval`` seconds.
    """

    def __init__(
        self,
        backend: StoreBackend | None,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        retry_interval: float = 30.0,
        local: InMemoryBackend | None = None,
        monotonic_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self._primary = backend
        self._local = local or InMemoryBackend(monotonic_fn)
        self.ttl_seconds = ttl_seconds
        self._retry_interval = retry_interval
        self._monotonic = monotonic_fn
        self._lock = threading.Lock()
        self._failed = False
        self._retry_at = 0.0

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @property
    def configured(self) -> bool:
        return self._primary is not None

    @property
    def degraded(self) -> bool:
        """True whenever values are only process-local."""
        with self._lock:
            return self._primary is None or self._failed

    @property
    def backend_name(self) -> str:
        return self._primary.name if self._primary is not None else self._local.name

    def _primary_usable(self) -> bool:
        if self._primary is None:
            return False
        with self._lock:
            return not self._failed or self._monotonic() >= self._retry_at

    def _mark_failed(self, op: str, error: Exception) -> None:
        with self._lock:
            first = not self._failed
            self._failed = True
            self._retry_at = self._monotonic() + self._retry_interval
        if first:
            logger.warning(
                "shared_store_degraded",
                backend=self.backend_name,
                op=op,
                error=str(error),
                retry_in_seconds=self._retry_interval,
            )

    def _mark_ok(self) -> None:
        with self._lock:
            recovered = self._failed
            self._failed = False
        if recovered:
            logger.info("shared_store_restored", backend=self.backend_name)

    def _run(self, op: str, primary_fn: Callable[[StoreBackend], T], local_fn: Callable[[], T]) -> T:
        primary = self._primary
        if primary is not None and self._primary_usable():
            try:
                result = primary_fn(primary)
            except StoreUnavailableError as e:
                self._mark_failed(op, e)
            else:
                self._mark_ok()
                return result
        return local_fn()

    # ------------------------------------------------------------------
    # Raw string values
    # ------------------------------------------------------------------

    def get(self, key: str) -> str | None:
        def from_primary(backend: StoreBackend) -> str | None:
            value = backend.get(key)
            if value is None:
                self._local.delete(key)
            else:
                self._local.set(key, value, self.ttl_seconds)
            return value

        return self._run("get", from_primary, lambda: self._local.get(key))

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds or self.ttl_seconds
        self._local.set(key, value, ttl)
        self._run("set", lambda b: b.set(key, value, ttl), lambda: None)

    def delete(self, key: str) -> None:
        self._local.delete(key)
        self._run("delete", lambda b: b.delete(key), lambda: None)

    def touch(self, key: str, ttl_seconds: int | None = None) -> None:
        """Refresh a key's TTL without rewriting it."""
        ttl = ttl_seconds or self.ttl_seconds
        self._local.expire(key, ttl)
        self._run("expire", lambda b: b.expire(key, ttl), lambda: None)

    # ------------------------------------------------------------------
    # JSON values
    # ------------------------------------------------------------------

    def get_json(self, key: str) -> Any | None:
        """Return the decoded value, or None when absent.

        Raises:
            MalformedStateError: If the stored text is not valid JSON.
        """
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise MalformedStateError(f"{key}: {e}") from e

    def set_json(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        self.set(key, json.dumps(value, separators=(",", ":")), ttl_seconds)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def check(self, key: str) -> bool:
        """Round-trip a scratch value through the primary backend.

        Bypasses the fallback: returns False when unconfigured or on any
        failure.
        """
        if self._primary is None:
            return False
        token = str(time.time_ns())
        try:
            self._primary.set(key, token, CHECK_TTL_SECONDS)
            result = self._primary.get(key)
            self._primary.delete(key)
        except StoreUnavailableError as e:
            logger.warning("shared_store_check_failed", backend=self.backend_name, error=str(e))
            return False
        return result == token


def build_backend(cfg: Settings) -> StoreBackend | None:
    """Pick the primary backend from settings; None when none is configured."""
    if cfg.redis_url:
        return RedisBackend(cfg.redis_url, timeout=cfg.store_timeout_seconds)
    if cfg.kv_rest_url and cfg.kv_rest_token:
        return RestKVBackend(cfg.kv_rest_url, cfg.kv_rest_token, timeout=cfg.store_timeout_seconds)
    return None


def build_state_store(cfg: Settings) -> SharedStateStore:
    backend = build_backend(cfg)
    if backend is None:
        logger.warning(
            "shared_store_unconfigured",
            detail="no REDIS_URL or KV_REST_URL/KV_REST_TOKEN; state is process-local",
        )
    return SharedStateStore(
        backend,
        ttl_seconds=cfg.state_ttl_seconds,
        retry_interval=cfg.store_retry_interval_seconds,
    )
