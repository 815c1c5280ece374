"""
Détection des aspects de transit sur une plage de dates.

Pour chaque jour de la plage, on interroge l'oracle pour chaque planète en transit, puis on
compare sa longitude à chaque planète natale: la différence angulaire est ramenée dans
[0, 180] et un aspect est retenu si l'écart à l'angle exact reste dans l'orbe.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterable, Iterator, Sequence

from transit_timeline.domain.entities import (
    ASPECT_PREFERENCE,
    AspectType,
    NatalProfile,
    PlanetId,
    TransitEvent,
)
from transit_timeline.domain.errors import EphemerisUnavailableError
from transit_timeline.infra.ephemeris.base import EphemerisOracle
from transit_timeline.infra.retry import NO_RETRY, RetryPolicy, call_external

_PLANET_RANK = {p: i for i, p in enumerate(PlanetId)}
_ASPECT_RANK = {a: i for i, a in enumerate(ASPECT_PREFERENCE)}


def normalize_degrees(value: float) -> float:
    """Ramène une longitude dans [0, 360)."""
    lon = value % 360.0
    return 0.0 if lon >= 360.0 else lon


def angular_difference(a: float, b: float) -> float:
    """Distance angulaire minimale entre deux longitudes, dans [0, 180]."""
    diff = abs(a - b) % 360.0
    return 360.0 - diff if diff > 180.0 else diff


def match_aspects(
    transit_lon: float, natal_lon: float, aspects: Iterable[AspectType] = tuple(AspectType)
) -> list[tuple[AspectType, float]]:
    """Aspects formés par deux longitudes, avec leur écart à l'exactitude."""
    diff = angular_difference(transit_lon, natal_lon)
    hits = []
    for aspect in aspects:
        exactness = abs(diff - aspect.angle)
        if exactness <= aspect.orb:
            hits.append((aspect, exactness))
    return hits


def fetch_longitude(
    oracle: EphemerisOracle,
    planet: PlanetId,
    instant: dt.datetime,
    policy: RetryPolicy = NO_RETRY,
) -> float:
    """Longitude normalisée via l'oracle, avec retries; `EphemerisUnavailableError` sinon."""
    lon = call_external(
        lambda: oracle.longitude(planet, instant),
        target="ephemeris",
        policy=policy,
        on_exhausted=lambda exc: EphemerisUnavailableError(
            "ephemeris oracle unavailable",
            details={"planet": planet.value, "instant": instant.isoformat()},
        ),
    )
    return normalize_degrees(lon)


def iter_days(start: dt.date, end: dt.date) -> Iterator[dt.date]:
    """Jours de `start` à `end` inclus."""
    day = start
    while day <= end:
        yield day
        day += dt.timedelta(days=1)


def _event_sort_key(event: TransitEvent) -> tuple:
    return (
        event.exactness_degrees,
        _ASPECT_RANK[event.aspect],
        _PLANET_RANK[event.transiting_planet],
        _PLANET_RANK[event.natal_planet],
    )


class TransitScan:
    """Séquence paresseuse, finie et rejouable des `TransitEvent` d'une plage de dates.

    Chaque itération relance le balayage depuis `start`; les événements sortent triés par date
    puis par exactitude croissante.
    """

    def __init__(
        self,
        oracle: EphemerisOracle,
        profile: NatalProfile,
        start: dt.date,
        end: dt.date,
        planets: Sequence[PlanetId] | None = None,
        retry_policy: RetryPolicy = NO_RETRY,
    ) -> None:
        self.oracle = oracle
        self.profile = profile
        self.start = start
        self.end = end
        self.planets = tuple(planets) if planets else tuple(PlanetId)
        self.retry_policy = retry_policy

    def __iter__(self) -> Iterator[TransitEvent]:
        for day in iter_days(self.start, self.end):
            yield from self.events_on(day)

    @property
    def total_days(self) -> int:
        return (self.end - self.start).days + 1

    def events_on(self, day: dt.date) -> list[TransitEvent]:
        """Événements d'un seul jour, triés par exactitude."""
        instant = dt.datetime(day.year, day.month, day.day, tzinfo=dt.UTC)
        events: list[TransitEvent] = []
        for transiting in self.planets:
            transit_lon = self._longitude(transiting, instant)
            for natal, natal_lon in self.profile.planet_longitudes.items():
                for aspect, exactness in match_aspects(transit_lon, natal_lon):
                    events.append(
                        TransitEvent(
                            date=day,
                            transiting_planet=transiting,
                            natal_planet=natal,
                            aspect=aspect,
                            exactness_degrees=exactness,
                        )
                    )
        events.sort(key=_event_sort_key)
        return events

    def _longitude(self, planet: PlanetId, instant: dt.datetime) -> float:
        return fetch_longitude(self.oracle, planet, instant, self.retry_policy)


def scan_transits(
    oracle: EphemerisOracle,
    profile: NatalProfile,
    start: dt.date,
    end: dt.date,
    planets: Sequence[PlanetId] | None = None,
    retry_policy: RetryPolicy = NO_RETRY,
) -> TransitScan:
    """Construit le balayage des transits de `start` à `end` (bornes incluses)."""
    return TransitScan(oracle, profile, start, end, planets=planets, retry_policy=retry_policy)
