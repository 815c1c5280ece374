"""Tests du balayage des transits et de la géométrie des aspects."""

import datetime as dt

import pytest

from tests.fakes import FailingOracle, ScriptedOracle
from transit_timeline.domain.entities import AspectType, NatalProfile, PlanetId
from transit_timeline.domain.errors import EphemerisUnavailableError
from transit_timeline.domain.transits import (
    angular_difference,
    match_aspects,
    normalize_degrees,
    scan_transits,
)
from transit_timeline.infra.ephemeris.linear import LinearEphemeris
from transit_timeline.infra.retry import RetryPolicy

START = dt.date(2024, 1, 1)


def _profile(longitudes: dict[PlanetId, float]) -> NatalProfile:
    return NatalProfile(
        user_id="u1",
        birth_instant=dt.datetime(1990, 6, 15, 12, 30, tzinfo=dt.UTC),
        timezone="UTC",
        latitude=0.0,
        longitude=0.0,
        planet_longitudes=longitudes,
        fingerprint="fp",
        computed_at=dt.datetime(2024, 1, 1, tzinfo=dt.UTC),
    )


def test_angular_difference_wraps_around():
    assert angular_difference(10.0, 350.0) == pytest.approx(20.0)
    assert angular_difference(0.0, 180.0) == pytest.approx(180.0)
    assert angular_difference(359.0, 1.0) == pytest.approx(2.0)
    assert angular_difference(90.0, 90.0) == 0.0


def test_normalize_degrees():
    assert normalize_degrees(-10.0) == pytest.approx(350.0)
    assert normalize_degrees(720.5) == pytest.approx(0.5)
    assert 0.0 <= normalize_degrees(-1e-12) < 360.0


def test_match_aspects_within_orb():
    hits = dict(match_aspects(95.0, 0.0))
    assert set(hits) == {AspectType.SQUARE}
    assert hits[AspectType.SQUARE] == pytest.approx(5.0)


def test_match_aspects_outside_orb():
    assert match_aspects(40.0, 0.0) == []
    # Opposition non retenue
    assert match_aspects(180.0, 0.0) == []


def test_match_aspects_orb_boundary():
    assert dict(match_aspects(8.0, 0.0)) == {AspectType.CONJUNCTION: pytest.approx(8.0)}
    assert match_aspects(66.5, 0.0) == []


def test_scan_finds_scripted_aspects_on_exact_days():
    positions = {
        (PlanetId.MARS, START + dt.timedelta(days=10)): 0.0,
        (PlanetId.MARS, START + dt.timedelta(days=40)): 90.0,
        (PlanetId.MARS, START + dt.timedelta(days=60)): 120.0,
        (PlanetId.MARS, START + dt.timedelta(days=80)): 180.0,
    }
    oracle = ScriptedOracle(positions, default=40.0)
    profile = _profile({PlanetId.SUN: 0.0})

    end = START + dt.timedelta(days=90)
    events = list(scan_transits(oracle, profile, START, end, planets=[PlanetId.MARS]))

    found = [((e.date - START).days, e.aspect) for e in events]
    assert found == [
        (10, AspectType.CONJUNCTION),
        (40, AspectType.SQUARE),
        (60, AspectType.TRINE),
    ]
    assert all(e.transiting_planet == PlanetId.MARS for e in events)
    assert all(e.natal_planet == PlanetId.SUN for e in events)
    assert all(e.exactness_degrees == 0.0 for e in events)


def test_scan_is_replayable():
    oracle = ScriptedOracle({(PlanetId.MARS, START): 0.0})
    profile = _profile({PlanetId.SUN: 0.0})
    scan = scan_transits(oracle, profile, START, START, planets=[PlanetId.MARS])
    assert list(scan) == list(scan)
    assert scan.total_days == 1


def test_scan_events_sorted_by_date_then_exactness():
    oracle = LinearEphemeris()
    profile = _profile({p: float(i * 36) for i, p in enumerate(PlanetId)})
    events = list(scan_transits(oracle, profile, START, START + dt.timedelta(days=20)))

    assert events
    assert events == sorted(events, key=lambda e: (e.date, e.exactness_degrees))


def test_every_event_lies_within_its_orb():
    oracle = LinearEphemeris()
    profile = _profile({p: float(i * 33 % 360) for i, p in enumerate(PlanetId)})
    for event in scan_transits(oracle, profile, START, START + dt.timedelta(days=45)):
        instant = dt.datetime(event.date.year, event.date.month, event.date.day, tzinfo=dt.UTC)
        transit_lon = oracle.longitude(event.transiting_planet, instant)
        natal_lon = profile.planet_longitudes[event.natal_planet]
        diff = angular_difference(transit_lon, natal_lon)
        assert abs(diff - event.aspect.angle) <= event.aspect.orb
        assert event.exactness_degrees == pytest.approx(abs(diff - event.aspect.angle))


def test_scan_raises_ephemeris_unavailable_after_retries():
    oracle = FailingOracle()
    policy = RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False)
    scan = scan_transits(oracle, _profile({PlanetId.SUN: 0.0}), START, START, retry_policy=policy)

    with pytest.raises(EphemerisUnavailableError):
        list(scan)
    assert oracle.calls == 3
