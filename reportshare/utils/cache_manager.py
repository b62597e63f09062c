"""Cache backends and the best-effort cache front used by every service.

Synopsis:
``SimpleCache`` is a thread-safe in-process store; ``RedisCache`` talks to a
shared Redis. Both raise ``CacheUnavailable`` on backend failure.
``CacheService`` wraps either one, prefixes keys, and turns every failure into
a logged miss so the cache is never a correctness dependency.

Glossary:
- Pattern: fnmatch/Redis glob such as ``userReports:*``.
- Backoff: After a Redis failure the client is skipped for a short window.
"""

from __future__ import annotations

import base64
import fnmatch
import json
import logging
import time
from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from threading import Lock
from typing import Any, Iterable, Mapping

import redis
from redis.exceptions import RedisError

from ..errors import CacheUnavailable
from ..services.interfaces import ReportCache

logger = logging.getLogger(__name__)

_TYPE_TAG = "__rs_type__"


def _encode_default(value: Any):
    if isinstance(value, datetime):
        return {_TYPE_TAG: "datetime", "v": value.isoformat()}
    if isinstance(value, date):
        return {_TYPE_TAG: "date", "v": value.isoformat()}
    if isinstance(value, Decimal):
        return {_TYPE_TAG: "decimal", "v": str(value)}
    if isinstance(value, (set, frozenset)):
        return {_TYPE_TAG: "set", "v": sorted(value, key=repr)}
    if isinstance(value, bytes):
        return {_TYPE_TAG: "bytes", "v": base64.b64encode(value).decode("ascii")}
    raise TypeError(f"Object of type {type(value).__name__} is not cache serializable")


def _decode_hook(obj: dict):
    tag = obj.get(_TYPE_TAG)
    if tag is None:
        return obj
    raw = obj.get("v")
    if tag == "datetime":
        return datetime.fromisoformat(raw)
    if tag == "date":
        return date.fromisoformat(raw)
    if tag == "decimal":
        return Decimal(raw)
    if tag == "set":
        return set(raw)
    if tag == "bytes":
        return base64.b64decode(raw)
    return obj


def dumps(value: Any) -> bytes:
    return json.dumps(value, default=_encode_default, separators=(",", ":")).encode("utf-8")


def loads(raw: bytes | str) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return json.loads(raw, object_hook=_decode_hook)


class SimpleCache:
    """Thread-safe in-memory cache with TTL and simple capacity eviction."""

    backend_name = "memory"

    def __init__(self, max_size: int = 1000, default_ttl: int = 300) -> None:
        self._cache: OrderedDict[str, dict] = OrderedDict()
        self._max_size = max(1, max_size)
        self._default_ttl = default_ttl
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str):
        with self._lock:
            entry = self._cache.get(key)
            if not entry:
                self._misses += 1
                return None
            if time.time() < entry["expires_at"]:
                self._hits += 1
                # Stored serialized so callers never share mutable state.
                return loads(entry["value"])
            del self._cache[key]
            self._misses += 1
            return None

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        payload = dumps(value)
        with self._lock:
            self._set_locked(key, payload, ttl)

    def _set_locked(self, key: str, payload: bytes, ttl: int | None) -> None:
        if key in self._cache:
            del self._cache[key]
        elif len(self._cache) >= self._max_size:
            self._purge_expired_locked()
            if len(self._cache) >= self._max_size:
                self._cache.popitem(last=False)
                self._evictions += 1
        expires_at = time.time() + (ttl if ttl is not None else self._default_ttl)
        self._cache[key] = {"value": payload, "expires_at": expires_at}

    def _purge_expired_locked(self) -> None:
        now = time.time()
        expired = [k for k, entry in self._cache.items() if entry["expires_at"] <= now]
        for k in expired:
            del self._cache[k]

    def set_many(self, items: Iterable[tuple[str, Any, int | None]]) -> None:
        encoded = [(key, dumps(value), ttl) for key, value, ttl in items]
        with self._lock:
            for key, payload, ttl in encoded:
                self._set_locked(key, payload, ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            keys = [k for k in self._cache.keys() if fnmatch.fnmatchcase(k, pattern)]
            for k in keys:
                del self._cache[k]
            return len(keys)

    def clear_prefix(self, prefix: str) -> int:
        return self.delete_pattern(f"{prefix}*")

    def stats(self) -> dict:
        with self._lock:
            self._purge_expired_locked()
            lookups = self._hits + self._misses
            return {
                "backend": self.backend_name,
                "connected": True,
                "key_count": len(self._cache),
                "max_size": self._max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / lookups * 100, 2) if lookups else 0.0,
                "evictions": self._evictions,
            }

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._lock:
            self._cache.clear()


class RedisCache:
    """Redis-backed cache. Failures raise CacheUnavailable and start a backoff window."""

    backend_name = "redis"

    def __init__(
        self,
        url: str,
        *,
        default_ttl: int = 300,
        socket_timeout: float = 2.0,
        backoff_seconds: int = 30,
        scan_count: int = 500,
    ) -> None:
        self._url = url
        self._default_ttl = default_ttl
        self._socket_timeout = socket_timeout
        self._client = None
        self._client_lock = Lock()
        self._redis_disabled_until = 0.0
        self._redis_backoff_seconds = backoff_seconds
        self._scan_count = scan_count
        self._hits = 0
        self._misses = 0

    def _get_client(self):
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = redis.Redis.from_url(
                        self._url,
                        decode_responses=False,
                        socket_timeout=self._socket_timeout,
                        socket_connect_timeout=self._socket_timeout,
                    )
        return self._client

    def _can_use_redis(self) -> bool:
        return time.time() >= self._redis_disabled_until

    def _guard(self) -> None:
        if not self._can_use_redis():
            raise CacheUnavailable("Redis cache in backoff window")

    def _handle_redis_failure(self, action: str, exc: Exception) -> CacheUnavailable:
        now = time.time()
        if now >= self._redis_disabled_until:
            logger.warning(
                "Redis cache %s failed (%s). Bypassing cache for %ds",
                action,
                exc,
                self._redis_backoff_seconds,
            )
        self._redis_disabled_until = now + self._redis_backoff_seconds
        return CacheUnavailable(f"Redis {action} failed: {exc}")

    def get(self, key: str):
        self._guard()
        try:
            raw = self._get_client().get(key)
        except RedisError as exc:
            raise self._handle_redis_failure("get", exc) from exc
        if raw is None:
            self._misses += 1
            return None
        try:
            value = loads(raw)
        except (ValueError, UnicodeDecodeError):
            # Undecodable payloads are dropped instead of served.
            logger.warning("Dropping undecodable cache payload for key %s", key)
            try:
                self._get_client().delete(key)
            except RedisError as exc:
                raise self._handle_redis_failure("delete", exc) from exc
            self._misses += 1
            return None
        self._hits += 1
        return value

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._guard()
        expires = ttl if ttl is not None else self._default_ttl
        payload = dumps(value)
        try:
            self._get_client().set(key, payload, ex=max(1, int(expires)))
        except RedisError as exc:
            raise self._handle_redis_failure("set", exc) from exc

    def set_many(self, items: Iterable[tuple[str, Any, int | None]]) -> None:
        self._guard()
        encoded = [
            (key, dumps(value), ttl if ttl is not None else self._default_ttl)
            for key, value, ttl in items
        ]
        if not encoded:
            return
        try:
            pipe = self._get_client().pipeline()
            for key, payload, expires in encoded:
                pipe.set(key, payload, ex=max(1, int(expires)))
            pipe.execute()
        except RedisError as exc:
            raise self._handle_redis_failure("mset", exc) from exc

    def delete(self, key: str) -> bool:
        self._guard()
        try:
            return bool(self._get_client().delete(key))
        except RedisError as exc:
            raise self._handle_redis_failure("delete", exc) from exc

    def delete_pattern(self, pattern: str) -> int:
        self._guard()
        deleted = 0
        try:
            client = self._get_client()
            cursor = 0
            while True:
                cursor, keys = client.scan(cursor=cursor, match=pattern, count=self._scan_count)
                if keys:
                    deleted += int(client.delete(*keys) or 0)
                if cursor == 0:
                    break
        except RedisError as exc:
            raise self._handle_redis_failure("delete_pattern", exc) from exc
        return deleted

    def clear_prefix(self, prefix: str) -> int:
        return self.delete_pattern(f"{prefix}*")

    def stats(self) -> dict:
        self._guard()
        try:
            client = self._get_client()
            key_count = int(client.dbsize() or 0)
            info = client.info("memory") or {}
        except RedisError as exc:
            raise self._handle_redis_failure("stats", exc) from exc
        lookups = self._hits + self._misses
        return {
            "backend": self.backend_name,
            "connected": True,
            "key_count": key_count,
            "memory_usage": int(info.get("used_memory", 0) or 0),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups * 100, 2) if lookups else 0.0,
        }

    def ping(self) -> bool:
        self._guard()
        try:
            return bool(self._get_client().ping())
        except RedisError as exc:
            raise self._handle_redis_failure("ping", exc) from exc

    def close(self) -> None:
        with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            try:
                client.close()
            except RedisError as exc:
                logger.warning("Failed to close Redis client: %s", exc)


class CacheService(ReportCache):
    """Namespaced, best-effort cache front. Never raises to callers."""

    def __init__(self, backend, *, key_prefix: str = "reportshare", default_ttl: int = 3600) -> None:
        self._backend = backend
        self._prefix = key_prefix.strip(":")
        self._default_ttl = default_ttl

    @property
    def backend(self):
        return self._backend

    def _k(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def _fail(self, action: str, key: str | None, exc: Exception) -> None:
        logger.warning("Cache %s failed for %s: %s", action, key or "<batch>", exc, exc_info=not isinstance(exc, CacheUnavailable))

    def get(self, key: str):
        try:
            return self._backend.get(self._k(key))
        except Exception as exc:
            self._fail("get", key, exc)
            return None

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        try:
            self._backend.set(self._k(key), value, ttl if ttl is not None else self._default_ttl)
            return True
        except Exception as exc:
            self._fail("set", key, exc)
            return False

    def mset(self, entries: Iterable[Mapping[str, Any]]) -> bool:
        """Batch set ``[{key, value, ttl}]``."""
        items = [
            (self._k(entry["key"]), entry["value"], entry.get("ttl") or self._default_ttl)
            for entry in entries
        ]
        if not items:
            return False
        try:
            self._backend.set_many(items)
            return True
        except Exception as exc:
            self._fail("mset", None, exc)
            return False

    def delete(self, key: str) -> bool:
        try:
            return bool(self._backend.delete(self._k(key)))
        except Exception as exc:
            self._fail("delete", key, exc)
            return False

    def delete_pattern(self, pattern: str) -> int:
        try:
            return int(self._backend.delete_pattern(self._k(pattern)) or 0)
        except Exception as exc:
            self._fail("delete_pattern", pattern, exc)
            return 0

    def clear(self) -> int:
        try:
            return int(self._backend.clear_prefix(f"{self._prefix}:") or 0)
        except Exception as exc:
            self._fail("clear", None, exc)
            return 0

    def get_stats(self) -> dict:
        try:
            stats = dict(self._backend.stats())
        except Exception as exc:
            self._fail("stats", None, exc)
            return {
                "backend": getattr(self._backend, "backend_name", "unknown"),
                "connected": False,
                "key_count": 0,
            }
        stats["key_prefix"] = self._prefix
        return stats

    def health_check(self) -> dict:
        probe_key = "__health__"
        started = time.perf_counter()
        backend_name = getattr(self._backend, "backend_name", "unknown")
        try:
            self._backend.ping()
            self._backend.set(self._k(probe_key), {"ok": True}, 10)
            value = self._backend.get(self._k(probe_key))
            self._backend.delete(self._k(probe_key))
        except Exception as exc:
            self._fail("health_check", probe_key, exc)
            return {"status": "unhealthy", "backend": backend_name, "error": str(exc)}
        latency_ms = round((time.perf_counter() - started) * 1000, 2)
        status = "healthy" if value == {"ok": True} else "degraded"
        return {"status": status, "backend": backend_name, "latency_ms": latency_ms}

    def close(self) -> None:
        try:
            self._backend.close()
        except Exception as exc:
            self._fail("close", None, exc)


def build_cache_service(config: Mapping[str, Any]) -> CacheService:
    """Construct the cache front from app config. Called once per app."""
    default_ttl = int(config.get("CACHE_DEFAULT_TTL", 3600))
    redis_url = config.get("REDIS_URL")
    if redis_url:
        backend = RedisCache(redis_url, default_ttl=default_ttl)
    else:
        backend = SimpleCache(
            max_size=int(config.get("CACHE_MAX_ENTRIES", 2000)),
            default_ttl=default_ttl,
        )
    logger.info("Report cache backend: %s", backend.backend_name)
    return CacheService(
        backend,
        key_prefix=str(config.get("CACHE_KEY_PREFIX") or "reportshare"),
        default_ttl=default_ttl,
    )
