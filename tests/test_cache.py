import pytest

from think_tank.core.cache import TTLCache


@pytest.fixture
def cache(clock) -> TTLCache:
    return TTLCache(default_ttl=60, max_entries=3, clock=clock)


def test_set_and_get(cache):
    assert cache.set("a", {"x": 1}) == 60
    assert cache.get("a") == {"x": 1}
    assert "a" in cache


def test_entries_expire(cache, clock):
    cache.set("a", 1)
    cache.set("b", 2, ttl=300)
    clock.advance(61)
    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert len(cache) == 1


def test_every_operation_sweeps_expired_entries(cache, clock):
    cache.set("old", 1, ttl=10)
    clock.advance(11)
    cache.set("new", 2)
    assert cache.keys() == ["new"]


def test_capacity_evicts_oldest_write(cache):
    for key in "abcd":
        cache.set(key, key)
    assert cache.keys() == ["b", "c", "d"]


def test_rewriting_a_key_refreshes_its_position(cache):
    for key in "abc":
        cache.set(key, key)
    cache.set("a", "again")
    cache.set("d", "d")
    assert cache.keys() == ["c", "a", "d"]


def test_delete_and_clear(cache):
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.delete("a") is True
    assert cache.delete("a") is False
    assert cache.clear() == 1
    assert len(cache) == 0


def test_delete_prefix_and_matching(clock):
    cache = TTLCache(max_entries=10, clock=clock)
    cache.set("user:u1:conv:c1:x", 1)
    cache.set("user:u1:conv:c2:y", 2)
    cache.set("user:u2:z", 3)
    assert cache.delete_prefix("user:u1:conv:c1") == 1
    assert cache.delete_matching("user:u1*") == 1
    assert cache.keys() == ["user:u2:z"]


def test_stats_reports_size_sample_and_memory(clock):
    cache = TTLCache(max_entries=10, clock=clock)
    cache.set("a", "xx")
    cache.set("b", [1, 2])
    stats = cache.stats(sample=1)
    assert stats.size == 2
    assert stats.keys == ["a"]
    assert stats.memory_usage == len('"xx"') + len("[1, 2]")


def test_non_positive_ttl_uses_default(cache, clock):
    assert cache.set("a", 1, ttl=0) == 60


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        TTLCache(max_entries=0)
