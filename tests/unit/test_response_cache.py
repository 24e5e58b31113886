"""
Unit tests for the bounded TTL response cache.
"""
import pytest

from tessie_assistant.services.response_cache import ResponseCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_get_returns_stored_value(clock):
    cache = ResponseCache(ttl_seconds=60, max_entries=10, clock=clock)
    cache.set("state", {"battery_level": 80})

    assert cache.get("state") == {"battery_level": 80}


def test_missing_key_returns_none(clock):
    assert ResponseCache(clock=clock).get("nothing") is None


def test_entries_expire(clock):
    cache = ResponseCache(ttl_seconds=60, max_entries=10, clock=clock)
    cache.set("state", 1)

    clock.now = 59.9
    assert cache.get("state") == 1

    clock.now = 60
    assert cache.get("state") is None
    assert len(cache) == 0


def test_oldest_entry_is_evicted(clock):
    cache = ResponseCache(ttl_seconds=60, max_entries=2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_reinsert_refreshes_position_and_timestamp(clock):
    cache = ResponseCache(ttl_seconds=60, max_entries=2, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    clock.now = 30
    cache.set("a", 10)
    cache.set("c", 3)

    assert cache.get("b") is None
    clock.now = 80
    assert cache.get("a") == 10


def test_clear(clock):
    cache = ResponseCache(clock=clock)
    cache.set(("vehicles",), [])
    cache.clear()

    assert len(cache) == 0


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        ResponseCache(max_entries=0)
