"""
Résolution du profil natal.

Transforme date/heure/lieu de naissance en longitudes natales des dix planètes (via l'oracle
d'éphémérides) et mémorise le profil par utilisateur.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import json
from collections.abc import Callable
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from transit_timeline.domain.entities import BirthInput, NatalProfile, PlanetId
from transit_timeline.domain.errors import InvalidBirthDataError
from transit_timeline.domain.transits import fetch_longitude
from transit_timeline.infra.ephemeris.base import EphemerisOracle
from transit_timeline.infra.retry import NO_RETRY, RetryPolicy

DEFAULT_BIRTH_TIME = dt.time(12, 0)


def _parse_date(raw: str) -> dt.date:
    try:
        return dt.date.fromisoformat(raw)
    except (TypeError, ValueError) as err:
        raise InvalidBirthDataError("invalid birth date", details={"date": raw}) from err


def _parse_time(raw: str | None) -> dt.time:
    if not raw:
        return DEFAULT_BIRTH_TIME
    try:
        return dt.time.fromisoformat(raw)
    except (TypeError, ValueError) as err:
        raise InvalidBirthDataError("invalid birth time", details={"time": raw}) from err


def _check_coordinates(lat: float, lon: float) -> None:
    if not -90.0 <= lat <= 90.0:
        raise InvalidBirthDataError("latitude out of range", details={"lat": lat})
    if not -180.0 <= lon <= 180.0:
        raise InvalidBirthDataError("longitude out of range", details={"lon": lon})


def _default_tz_lookup() -> Callable[[float, float], str | None]:
    from timezonefinder import TimezoneFinder  # noqa: PLC0415 - chargement coûteux, différé

    finder = TimezoneFinder()
    return lambda lat, lon: finder.timezone_at(lat=lat, lng=lon)


class NatalProfileResolver:
    """Calcule, met en cache et invalide les profils natals.

    Responsabilités:
    - Valider les données de naissance (avant tout appel à l'oracle).
    - Convertir l'instant local de naissance en UTC selon le fuseau du lieu.
    - Interroger l'oracle une fois par planète et persister le profil par utilisateur.
    """

    def __init__(
        self,
        oracle: EphemerisOracle,
        profile_repo,
        retry_policy: RetryPolicy = NO_RETRY,
        tz_lookup: Callable[[float, float], str | None] | None = None,
        now: Callable[[], dt.datetime] = lambda: dt.datetime.now(dt.UTC),
    ) -> None:
        self.oracle = oracle
        self.profiles = profile_repo
        self.retry_policy = retry_policy
        self._tz_lookup = tz_lookup
        self._now = now
        self._log = structlog.get_logger(__name__).bind(component="natal_resolver")

    def birth_instant(self, birth: BirthInput) -> tuple[dt.datetime, str]:
        """Valide `birth` et retourne (instant UTC, fuseau IANA retenu).

        Raises:
            InvalidBirthDataError: date/heure illisible, fuseau inconnu ou coordonnées hors
                bornes.
        """
        _check_coordinates(birth.lat, birth.lon)
        day = _parse_date(birth.date)
        clock = _parse_time(birth.time)
        tz_name = birth.tz or self._infer_tz(birth.lat, birth.lon)
        try:
            tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as err:
            raise InvalidBirthDataError("unknown timezone", details={"tz": tz_name}) from err
        local = dt.datetime.combine(day, clock).replace(tzinfo=tz)
        return local.astimezone(dt.UTC), tz_name

    def resolve(self, user_id: str, birth: BirthInput) -> NatalProfile:
        """Retourne le profil natal de `user_id`, recalculé seulement si la naissance change."""
        instant, tz_name = self.birth_instant(birth)
        fingerprint = self.fingerprint(birth, instant)
        existing = self.profiles.get(user_id)
        if existing is not None and existing.fingerprint == fingerprint:
            return existing

        longitudes = {planet: self._longitude(planet, instant) for planet in PlanetId}
        profile = NatalProfile(
            user_id=user_id,
            birth_instant=instant,
            timezone=tz_name,
            latitude=birth.lat,
            longitude=birth.lon,
            planet_longitudes=longitudes,
            fingerprint=fingerprint,
            computed_at=self._now(),
        )
        self.profiles.save(profile)
        self._log.info(
            "natal_profile_computed", user_id=user_id, replaced=existing is not None
        )
        return profile

    def compute_transient(self, birth: BirthInput, owner_id: str) -> NatalProfile:
        """Calcule un profil sans le persister (appelants anonymes)."""
        instant, tz_name = self.birth_instant(birth)
        return NatalProfile(
            user_id=owner_id,
            birth_instant=instant,
            timezone=tz_name,
            latitude=birth.lat,
            longitude=birth.lon,
            planet_longitudes={p: self._longitude(p, instant) for p in PlanetId},
            fingerprint=self.fingerprint(birth, instant),
            computed_at=self._now(),
        )

    @staticmethod
    def fingerprint(birth: BirthInput, instant: dt.datetime) -> str:
        """Empreinte stable des données de naissance (idempotence de l'upsert)."""
        payload: dict[str, Any] = {
            "instant": instant.isoformat(),
            "lat": round(birth.lat, 6),
            "lon": round(birth.lon, 6),
        }
        raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(raw.encode()).hexdigest()

    def _infer_tz(self, lat: float, lon: float) -> str:
        if self._tz_lookup is None:
            self._tz_lookup = _default_tz_lookup()
        return self._tz_lookup(lat, lon) or "UTC"

    def _longitude(self, planet: PlanetId, instant: dt.datetime) -> float:
        return fetch_longitude(self.oracle, planet, instant, self.retry_policy)
