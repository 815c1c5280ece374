"""
Entités du domaine métier.

Ce module définit les modèles de données du moteur de timelines: profil natal, événements de
transit, timelines, tiers d'abonnement, crédits et registre de points.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

TierName = Literal["anonymous", "free", "premium"]
OwnerKind = Literal["user", "anonymous"]
ALLOWED_TIMEFRAMES = (1, 3, 6, 12)


class PlanetId(str, Enum):
    """Les dix corps suivis, dans l'ordre traditionnel."""

    SUN = "Sun"
    MOON = "Moon"
    MERCURY = "Mercury"
    VENUS = "Venus"
    MARS = "Mars"
    JUPITER = "Jupiter"
    SATURN = "Saturn"
    URANUS = "Uranus"
    NEPTUNE = "Neptune"
    PLUTO = "Pluto"


class AspectType(str, Enum):
    """Aspects majeurs retenus, avec angle exact et orbe maximal."""

    CONJUNCTION = "conjunction"
    SEXTILE = "sextile"
    SQUARE = "square"
    TRINE = "trine"

    @property
    def angle(self) -> float:
        return ASPECT_GEOMETRY[self][0]

    @property
    def orb(self) -> float:
        return ASPECT_GEOMETRY[self][1]


# (angle exact, orbe)
ASPECT_GEOMETRY: dict[AspectType, tuple[float, float]] = {
    AspectType.CONJUNCTION: (0.0, 8.0),
    AspectType.SEXTILE: (60.0, 6.0),
    AspectType.SQUARE: (90.0, 8.0),
    AspectType.TRINE: (120.0, 8.0),
}

# Préférence en cas d'égalité: conjonction > trigone > sextile > carré
ASPECT_PREFERENCE: tuple[AspectType, ...] = (
    AspectType.CONJUNCTION,
    AspectType.TRINE,
    AspectType.SEXTILE,
    AspectType.SQUARE,
)


class BirthInput(BaseModel):
    """Données de naissance brutes, validées par le résolveur de profil natal."""

    date: str  # YYYY-MM-DD
    time: str | None = None  # HH:MM, 12:00 locale si absent
    tz: str | None = None  # IANA TZ, déduite des coordonnées si absente
    lat: float
    lon: float


class NatalProfile(BaseModel):
    """Positions natales des dix planètes pour un utilisateur."""

    user_id: str
    birth_instant: dt.datetime
    timezone: str
    latitude: float
    longitude: float
    planet_longitudes: dict[PlanetId, float]
    fingerprint: str
    computed_at: dt.datetime


class TransitEvent(BaseModel):
    """Aspect d'une planète en transit à une planète natale, un jour donné."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    transiting_planet: PlanetId
    natal_planet: PlanetId
    aspect: AspectType
    exactness_degrees: float

    @property
    def summary(self) -> str:
        return (
            f"Transiting {self.transiting_planet.value} {self.aspect.value} "
            f"natal {self.natal_planet.value}"
        )


class ResourceLink(BaseModel):
    """Ressource externe suggérée pour une action."""

    title: str
    url: str


class ActionSlot(BaseModel):
    """Action datée, alignée sur un transit favorable."""

    date: dt.date
    transit_summary: str
    transit: TransitEvent
    action_text: str
    strategy_text: str | None = None
    resource_links: list[ResourceLink] = Field(default_factory=list)


class Timeline(BaseModel):
    """Timeline persistée: actions ordonnées par date et affirmations quotidiennes."""

    id: str
    owner_id: str
    owner_kind: OwnerKind
    outcome_goal: str
    context: str = ""
    approach: str = "balanced"
    timeframe_months: int
    start_date: dt.date
    end_date: dt.date
    actions: list[ActionSlot]
    affirmations: list[str]
    created_at: dt.datetime
    credits_used: int = 1


class SubscriptionTier(BaseModel):
    """Configuration statique d'un niveau d'abonnement."""

    name: TierName
    max_timeframe_months: int
    monthly_credits: int
    max_actions: int = 15
    can_see_all_actions: bool = False
    credit_period: Literal["calendar_month", "rolling_30d"] = "calendar_month"


class Caller(BaseModel):
    """Identité de l'appelant: utilisateur authentifié ou empreinte anonyme."""

    kind: OwnerKind
    id: str
    tier: TierName

    @property
    def is_anonymous(self) -> bool:
        return self.kind == "anonymous"


class CreditBalance(BaseModel):
    """Solde de crédits d'un propriétaire pour une période donnée."""

    owner_id: str
    remaining: int
    period_key: str


class PointsLedgerEntry(BaseModel):
    """Écriture immuable du registre de points."""

    user_id: str
    event_type: str
    points: int
    dedupe_key: str
    occurred_at: dt.datetime
    timeline_id: str | None = None


class UserLevelState(BaseModel):
    """État dénormalisé des points, niveau et série d'un utilisateur."""

    user_id: str
    lifetime_points: int = 0
    current_level: int = 1
    level_achieved_at: dt.datetime | None = None
    current_streak: int = 0
    longest_streak: int = 0
    last_active_day: dt.date | None = None
    streak_started_on: dt.date | None = None
    completed_actions: int = 0


class GenerationRequest(BaseModel):
    """Demande de génération de timeline."""

    outcome_goal: str = Field(..., min_length=1)
    context: str = ""
    approach: str = "balanced"
    timeframe_months: int
    birth: BirthInput
    start_date: dt.date | None = None
