"""Tests du cache TTL et de l'oracle mis en cache."""

import datetime as dt

from tests.fakes import ScriptedOracle
from transit_timeline.domain.entities import PlanetId
from transit_timeline.infra.cache import TTLCache
from transit_timeline.infra.ephemeris.base import CachedEphemeris


class FakeTime:
    def __init__(self) -> None:
        self.t = 1000.0

    def __call__(self) -> float:
        return self.t


def test_get_set_and_expiry():
    now = FakeTime()
    cache = TTLCache(ttl_seconds=10, clock=now)
    cache.set("k", 1)
    assert cache.get("k") == 1

    now.t += 10
    assert cache.get("k") is None
    assert len(cache) == 0


def test_per_entry_ttl():
    now = FakeTime()
    cache = TTLCache(ttl_seconds=10, clock=now)
    cache.set("short", "a", ttl=1)
    cache.set("long", "b")
    now.t += 5
    assert cache.get("short") is None
    assert cache.get("long") == "b"


def test_eviction_when_full():
    now = FakeTime()
    cache = TTLCache(ttl_seconds=100, max_entries=2, clock=now)
    cache.set("a", 1)
    now.t += 1
    cache.set("b", 2)
    now.t += 1
    cache.set("c", 3)

    assert len(cache) == 2
    assert cache.get("a") is None
    assert cache.get("c") == 3


def test_get_or_set_calls_factory_once():
    cache = TTLCache()
    calls = []

    def factory():
        calls.append(1)
        return "value"

    assert cache.get_or_set("k", factory) == "value"
    assert cache.get_or_set("k", factory) == "value"
    assert len(calls) == 1


def test_cached_ephemeris_hits_inner_oracle_once_per_instant():
    inner = ScriptedOracle(default=123.0)
    oracle = CachedEphemeris(inner, TTLCache())
    instant = dt.datetime(2024, 1, 1, tzinfo=dt.UTC)

    assert oracle.longitude(PlanetId.SUN, instant) == 123.0
    assert oracle.longitude(PlanetId.SUN, instant) == 123.0
    assert oracle.longitude(PlanetId.MOON, instant) == 123.0
    assert inner.calls == 2
