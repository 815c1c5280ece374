"""Interface de l'oracle d'éphémérides et décorateur de cache.

L'oracle est une fonction pure du temps: `longitude(planet, instant_utc) -> [0, 360)`.
"""

from __future__ import annotations

import datetime as dt
from abc import ABC, abstractmethod

from transit_timeline.domain.entities import PlanetId
from transit_timeline.infra.cache import TTLCache


class EphemerisOracle(ABC):
    """Interface abstraite de calcul de longitude écliptique."""

    @abstractmethod
    def longitude(self, planet: PlanetId, instant_utc: dt.datetime) -> float:
        """Longitude écliptique géocentrique de `planet` à `instant_utc`, en degrés [0, 360)."""
        ...


class CachedEphemeris(EphemerisOracle):
    """Mémorise les longitudes de l'oracle sous-jacent dans un `TTLCache` injecté."""

    def __init__(self, inner: EphemerisOracle, cache: TTLCache) -> None:
        self.inner = inner
        self.cache = cache

    def longitude(self, planet: PlanetId, instant_utc: dt.datetime) -> float:
        key = ("lon", planet.value, instant_utc.isoformat())
        return self.cache.get_or_set(key, lambda: self.inner.longitude(planet, instant_utc))
