from __future__ import annotations

import fnmatch
from datetime import datetime
from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from reportshare.errors import CacheUnavailable
from reportshare.utils import cache_manager
from reportshare.utils.cache_manager import CacheService, RedisCache, SimpleCache, build_cache_service


class _FakeRedisClient:
    def __init__(self):
        self.values: dict[str, bytes] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("connection refused")

    def get(self, key: str):
        self._check()
        return self.values.get(key)

    def set(self, key: str, value: bytes, ex: int | None = None):
        self._check()
        self.values[key] = value
        return True

    def delete(self, *keys: str):
        self._check()
        deleted = 0
        for key in keys:
            if key in self.values:
                deleted += 1
                self.values.pop(key, None)
        return deleted

    def scan(self, cursor=0, match=None, count=None):
        self._check()
        return 0, [key for key in self.values if fnmatch.fnmatchcase(key, match)]

    def pipeline(self):
        return _FakePipeline(self)

    def dbsize(self):
        self._check()
        return len(self.values)

    def info(self, section=None):
        return {"used_memory": 1024}

    def ping(self):
        self._check()
        return True

    def close(self):
        return None


class _FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def set(self, key, value, ex=None):
        self.ops.append((key, value))

    def execute(self):
        for key, value in self.ops:
            self.client.set(key, value)


@pytest.fixture
def fake_redis(monkeypatch):
    backend = RedisCache("redis://cache.invalid:6379/0", default_ttl=30)
    client = _FakeRedisClient()
    monkeypatch.setattr(backend, "_get_client", lambda: client)
    return backend, client


def test_simple_cache_expires_entries(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr(cache_manager.time, "time", lambda: clock[0])
    cache = SimpleCache(default_ttl=60)

    cache.set("report:a", {"slug": "a"})
    assert cache.get("report:a") == {"slug": "a"}

    clock[0] += 61
    assert cache.get("report:a") is None


def test_simple_cache_returns_copies():
    cache = SimpleCache()
    cache.set("k", {"items": [1]})
    cache.get("k")["items"].append(2)
    assert cache.get("k") == {"items": [1]}


def test_simple_cache_evicts_oldest_when_full():
    cache = SimpleCache(max_size=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)
    assert cache.get("a") is None
    assert cache.get("c") == 3
    assert cache.stats()["evictions"] == 1


def test_simple_cache_pattern_delete():
    cache = SimpleCache()
    for key in ("rs:userReports:u1", "rs:userReports:u2", "rs:reportStats:u1"):
        cache.set(key, True)
    assert cache.delete_pattern("rs:userReports:*") == 2
    assert cache.get("rs:reportStats:u1") is True


def test_cache_service_prefixes_keys_and_preserves_types():
    service = CacheService(SimpleCache(), key_prefix="reportshare")
    created = datetime(2026, 3, 1, 9, 30)
    service.set("report:abc", {"created_at": created, "score": Decimal("9.5")})

    assert service.get("report:abc") == {"created_at": created, "score": Decimal("9.5")}
    assert service.backend.get("reportshare:report:abc") is not None


def test_cache_service_mset_and_clear():
    service = CacheService(SimpleCache(), key_prefix="rs")
    assert service.mset([
        {"key": "report:a", "value": 1, "ttl": 60},
        {"key": "report:b", "value": 2},
    ])
    assert service.get("report:b") == 2
    assert service.mset([]) is False
    assert service.clear() == 2
    assert service.get("report:a") is None


def test_cache_service_stats_and_health():
    service = CacheService(SimpleCache(), key_prefix="rs")
    service.get("missing")
    stats = service.get_stats()
    assert stats["backend"] == "memory"
    assert stats["misses"] >= 1
    assert stats["key_prefix"] == "rs"
    assert service.health_check()["status"] == "healthy"


def test_redis_cache_round_trips_and_deletes_by_pattern(fake_redis):
    backend, client = fake_redis
    service = CacheService(backend, key_prefix="rs")

    service.set("userReports:u1", {"limit": 20, "items": []})
    service.set("userReports:u2", {"limit": 20, "items": []})
    service.set("recentReports", {"limit": 10, "items": []})

    assert service.get("userReports:u1") == {"limit": 20, "items": []}
    assert service.delete_pattern("userReports:*") == 2
    assert set(client.values) == {"rs:recentReports"}


def test_redis_cache_drops_undecodable_payload(fake_redis):
    backend, client = fake_redis
    client.values["rs:legacy"] = b"\x80\x04not-json"
    assert backend.get("rs:legacy") is None
    assert "rs:legacy" not in client.values


def test_redis_failure_raises_cache_unavailable_and_backs_off(fake_redis):
    backend, client = fake_redis
    client.fail = True
    with pytest.raises(CacheUnavailable):
        backend.get("rs:any")

    client.fail = False
    with pytest.raises(CacheUnavailable):
        backend.get("rs:any")


def test_cache_service_never_raises_on_backend_failure(fake_redis):
    backend, client = fake_redis
    client.fail = True
    service = CacheService(backend, key_prefix="rs")

    assert service.get("report:x") is None
    assert service.set("report:x", {"a": 1}) is False
    assert service.delete("report:x") is False
    assert service.delete_pattern("report:*") == 0
    assert service.mset([{"key": "a", "value": 1}]) is False
    assert service.clear() == 0
    assert service.get_stats()["connected"] is False
    assert service.health_check()["status"] == "unhealthy"


def test_build_cache_service_selects_backend():
    memory = build_cache_service({"REDIS_URL": None, "CACHE_KEY_PREFIX": "x"})
    assert isinstance(memory.backend, SimpleCache)

    redis_backed = build_cache_service({"REDIS_URL": "redis://cache.invalid:6379/0"})
    assert isinstance(redis_backed.backend, RedisCache)
