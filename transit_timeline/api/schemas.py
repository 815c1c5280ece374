# Schémas Pydantic exposés par l'API (requêtes et réponses).

import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, Field

from transit_timeline.domain.entities import BirthInput, ResourceLink


class BirthRequest(BaseModel):
    """Données de naissance.

    Champs:
    - date: str (YYYY-MM-DD)
    - time: str | None (HH:MM, 12:00 locale si absent)
    - tz: str | None (IANA timezone, déduite des coordonnées si absente)
    - lat / lon: float (degrés décimaux)
    """

    date: str
    time: str | None = None
    tz: str | None = None
    lat: float
    lon: float

    def to_domain(self) -> BirthInput:
        return BirthInput(**self.model_dump())


class NatalResponse(BaseModel):
    user_id: str
    birth_instant: dt.datetime
    timezone: str
    planet_longitudes: dict[str, float]
    computed_at: dt.datetime


class TimelineRequest(BaseModel):
    """Demande de génération d'une timeline."""

    outcome_goal: str = Field(..., min_length=1, max_length=500)
    context: str = Field("", max_length=2000)
    approach: Literal["conservative", "balanced", "aggressive"] = "balanced"
    timeframe_months: int
    birth: BirthRequest
    start_date: dt.date | None = None


class ActionView(BaseModel):
    """Action telle que rendue à l'appelant (détails absents si `locked`)."""

    index: int
    date: dt.date
    locked: bool = False
    completed: bool = False
    transit_summary: str | None = None
    action_text: str | None = None
    strategy_text: str | None = None
    resource_links: list[ResourceLink] = Field(default_factory=list)


class TimelineView(BaseModel):
    id: str
    outcome_goal: str
    context: str
    approach: str
    timeframe_months: int
    start_date: dt.date
    end_date: dt.date
    created_at: dt.datetime
    actions: list[ActionView]
    affirmations_count: int


class GenerationResponse(BaseModel):
    timeline: TimelineView
    warnings: list[dict[str, Any]] = Field(default_factory=list)
    credits_remaining: int | None = None
    points_awarded: int = 0
    level_up: dict[str, Any] | None = None


class TimelineSummary(BaseModel):
    id: str
    outcome_goal: str
    timeframe_months: int
    start_date: dt.date
    end_date: dt.date
    created_at: dt.datetime
    actions_count: int


class AffirmationToday(BaseModel):
    timeline_id: str
    date: dt.date
    index: int
    text: str
    confirmed: bool


class AffirmationConfirmRequest(BaseModel):
    # Optionnel; doit valoir le jour UTC courant s'il est fourni
    day_key: dt.date | None = None


class PointsAwardResponse(BaseModel):
    """Résultat d'un événement de points.

    Champs:
    - points_awarded: total des écritures ajoutées (0 si déjà enregistré)
    - already_recorded: l'événement avait déjà été compté
    - level_up: {previous_level, new_level, level_name} si passage de niveau
    """

    points_awarded: int
    already_recorded: bool
    level_up: dict[str, Any] | None = None
    lifetime_points: int
    current_level: int


class LevelResponse(BaseModel):
    user_id: str
    level: int
    level_name: str
    lifetime_points: int
    points_for_next_level: int | None
    points_needed: int
    progress_percent: float
    is_max_level: bool
    current_streak: int
    longest_streak: int
    completed_actions: int
    level_achieved_at: dt.datetime | None = None


class LedgerEntryView(BaseModel):
    event_type: str
    points: int
    occurred_at: dt.datetime
    timeline_id: str | None = None


class LeaderboardRow(BaseModel):
    rank: int
    user_id: str
    lifetime_points: int
    level: int
    level_name: str


class ProfileStats(BaseModel):
    user_id: str
    total_generations: int
    total_actions_completed: int
    current_streak: int
    longest_streak: int
    lifetime_points: int
    level: int
    level_name: str


class CreditsResponse(BaseModel):
    tier: str
    remaining: int
    monthly_credits: int
    period_key: str


class TierView(BaseModel):
    name: str
    max_timeframe_months: int
    monthly_credits: int
    max_actions: int
    can_see_all_actions: bool
    credit_period: str
