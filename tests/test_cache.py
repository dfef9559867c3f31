from batch_engine.services.cache import CacheRegistry, TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_cache_returns_value_until_ttl_elapses():
    clock = FakeClock()
    cache = TTLCache("test", default_ttl_seconds=60, clock=clock)
    cache.set("k", "v")

    clock.now += 59
    assert cache.get("k") == "v"

    clock.now += 1
    assert cache.get("k") is None
    assert cache.size() == 0


def test_cache_per_entry_ttl_overrides_default():
    clock = FakeClock()
    cache = TTLCache("test", default_ttl_seconds=600, clock=clock)
    cache.set("short", 1, ttl_seconds=5)
    cache.set("long", 2)

    clock.now += 10
    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_cleanup_removes_only_expired_entries():
    clock = FakeClock()
    cache = TTLCache("test", default_ttl_seconds=30, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2, ttl_seconds=120)

    clock.now += 31
    assert cache.cleanup() == 1
    assert cache.size() == 1
    assert cache.get("b") == 2


def test_last_writer_wins_and_delete():
    cache = TTLCache("test")
    cache.set("k", "first")
    cache.set("k", "second")
    assert cache.get("k") == "second"

    cache.delete("k")
    cache.delete("missing")
    assert cache.get("k") is None


def test_stats_count_hits_and_misses():
    cache = TTLCache("geo")
    cache.set("k", 1)
    cache.get("k")
    cache.get("nope")

    assert cache.stats() == {"name": "geo", "size": 1, "hits": 1, "misses": 1}


def test_registry_sweeps_and_clears_both_caches():
    clock = FakeClock()
    caches = CacheRegistry.create(geocode_ttl_seconds=10, matrix_ttl_seconds=100, clock=clock)
    caches.geocode.set("g", 1)
    caches.matrix.set("m", 2)

    clock.now += 50
    assert caches.cleanup() == 1
    assert caches.stats()["matrix"]["size"] == 1

    caches.clear()
    assert caches.geocode.size() == 0
    assert caches.matrix.size() == 0
