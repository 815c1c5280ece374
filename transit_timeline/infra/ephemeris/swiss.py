"""Oracle d'éphémérides adossé à Swiss Ephemeris (pyswisseph)."""

from __future__ import annotations

import datetime as dt
import os

import swisseph as swe

from transit_timeline.domain.entities import PlanetId
from transit_timeline.domain.transits import normalize_degrees
from transit_timeline.infra.ephemeris.base import EphemerisOracle
from transit_timeline.infra.retry import TransientError

BODIES: dict[PlanetId, int] = {
    PlanetId.SUN: swe.SUN,
    PlanetId.MOON: swe.MOON,
    PlanetId.MERCURY: swe.MERCURY,
    PlanetId.VENUS: swe.VENUS,
    PlanetId.MARS: swe.MARS,
    PlanetId.JUPITER: swe.JUPITER,
    PlanetId.SATURN: swe.SATURN,
    PlanetId.URANUS: swe.URANUS,
    PlanetId.NEPTUNE: swe.NEPTUNE,
    PlanetId.PLUTO: swe.PLUTO,
}


class EphemerisBackendError(TransientError):
    """Échec de calcul remonté par Swiss Ephemeris."""


def to_julian_day(instant_utc: dt.datetime) -> float:
    """Convertit un instant UTC (aware ou naïf supposé UTC) en jour julien."""
    if instant_utc.tzinfo is not None:
        instant_utc = instant_utc.astimezone(dt.UTC)
    hour = (
        instant_utc.hour
        + instant_utc.minute / 60
        + instant_utc.second / 3600
        + instant_utc.microsecond / 3_600_000_000
    )
    return swe.julday(instant_utc.year, instant_utc.month, instant_utc.day, hour, swe.GREG_CAL)


class SwissEphemeris(EphemerisOracle):
    """Calcule les longitudes via `swe.calc_ut` (fichiers SE si disponibles, sinon Moshier)."""

    def __init__(self, ephe_path: str | None = None, use_moshier: bool = False) -> None:
        if ephe_path and os.path.isdir(ephe_path):
            swe.set_ephe_path(ephe_path)
        self._flag = swe.FLG_MOSEPH if use_moshier else swe.FLG_SWIEPH

    def longitude(self, planet: PlanetId, instant_utc: dt.datetime) -> float:
        try:
            values, _ = swe.calc_ut(to_julian_day(instant_utc), BODIES[planet], self._flag)
        except swe.Error as err:
            raise EphemerisBackendError(str(err)) from err
        return normalize_degrees(values[0])
