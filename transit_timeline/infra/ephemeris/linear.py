"""Oracle déterministe à mouvement moyen linéaire (développement et tests).

Chaque planète part de sa longitude moyenne à J2000 et avance à vitesse constante. Les valeurs ne
prétendent pas à l'exactitude astronomique: elles donnent des trajectoires stables et
reproductibles sans fichiers d'éphémérides.
"""

from __future__ import annotations

import datetime as dt

from transit_timeline.domain.entities import PlanetId
from transit_timeline.domain.transits import normalize_degrees
from transit_timeline.infra.ephemeris.base import EphemerisOracle

J2000 = dt.datetime(2000, 1, 1, 12, 0, tzinfo=dt.UTC)

# (longitude moyenne à J2000 en degrés, mouvement moyen en degrés/jour)
MEAN_ELEMENTS: dict[PlanetId, tuple[float, float]] = {
    PlanetId.SUN: (280.460, 0.985647),
    PlanetId.MOON: (218.316, 13.176396),
    PlanetId.MERCURY: (252.251, 4.092339),
    PlanetId.VENUS: (181.980, 1.602131),
    PlanetId.MARS: (355.433, 0.524033),
    PlanetId.JUPITER: (34.351, 0.083085),
    PlanetId.SATURN: (50.077, 0.033461),
    PlanetId.URANUS: (314.055, 0.011731),
    PlanetId.NEPTUNE: (304.349, 0.005981),
    PlanetId.PLUTO: (238.929, 0.003968),
}


class LinearEphemeris(EphemerisOracle):
    """Longitude = (l0 + vitesse × jours depuis l'époque) mod 360."""

    def __init__(
        self,
        elements: dict[PlanetId, tuple[float, float]] | None = None,
        epoch: dt.datetime = J2000,
    ) -> None:
        self.elements = {**MEAN_ELEMENTS, **(elements or {})}
        self.epoch = epoch

    def longitude(self, planet: PlanetId, instant_utc: dt.datetime) -> float:
        if instant_utc.tzinfo is None:
            instant_utc = instant_utc.replace(tzinfo=dt.UTC)
        days = (instant_utc - self.epoch).total_seconds() / 86400.0
        l0, speed = self.elements[planet]
        return normalize_degrees(l0 + speed * days)
