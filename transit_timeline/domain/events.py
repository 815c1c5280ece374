"""
Événements de points: union fermée et discriminée par `kind`.

Chaque variante a un jeu de champs fixe et validé, et sait construire sa clé de déduplication
(`dedupe_key`) qui garantit au plus une attribution par utilisateur.
"""

from __future__ import annotations

import datetime as dt
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

MilestoneName = Literal[
    "first_generation",
    "milestone_10_actions",
    "milestone_50_actions",
    "milestone_100_actions",
]


class AffirmationConfirmed(BaseModel):
    kind: Literal["affirmation_confirmed"] = "affirmation_confirmed"
    timeline_id: str
    day_key: dt.date

    def dedupe_key(self, user_id: str) -> str:
        return f"{user_id}:affirmation:{self.timeline_id}:{self.day_key.isoformat()}"


class ActionCompleted(BaseModel):
    kind: Literal["action_completed"] = "action_completed"
    timeline_id: str
    action_index: int = Field(..., ge=0)
    # Nombre d'actions de la timeline, pour détecter la fin de timeline
    timeline_action_count: int | None = Field(default=None, ge=1)

    def dedupe_key(self, user_id: str) -> str:
        return f"{user_id}:action_completed:{self.timeline_id}:{self.action_index}"


class TimelineFinished(BaseModel):
    kind: Literal["timeline_finished"] = "timeline_finished"
    timeline_id: str

    def dedupe_key(self, user_id: str) -> str:
        return f"{user_id}:timeline_finished:{self.timeline_id}"


class DailyLogin(BaseModel):
    kind: Literal["daily_login"] = "daily_login"
    day_key: dt.date

    def dedupe_key(self, user_id: str) -> str:
        return f"{user_id}:daily_login:{self.day_key.isoformat()}"


class Milestone(BaseModel):
    kind: Literal["milestone"] = "milestone"
    milestone: MilestoneName

    def dedupe_key(self, user_id: str) -> str:
        return f"{user_id}:milestone:{self.milestone}"


class Referral(BaseModel):
    kind: Literal["referral"] = "referral"
    referred_user_id: str = Field(..., min_length=1)

    def dedupe_key(self, user_id: str) -> str:
        return f"{user_id}:referral:{self.referred_user_id}"


class SocialShare(BaseModel):
    kind: Literal["social_share"] = "social_share"
    timeline_id: str

    def dedupe_key(self, user_id: str) -> str:
        return f"{user_id}:social_share:{self.timeline_id}"


class Feedback(BaseModel):
    kind: Literal["feedback"] = "feedback"
    feedback_id: str = Field(..., min_length=1)

    def dedupe_key(self, user_id: str) -> str:
        return f"{user_id}:feedback:{self.feedback_id}"


class StreakBonus(BaseModel):
    """Bonus de série, émis par le moteur lui-même au franchissement d'un seuil."""

    kind: Literal["streak_bonus"] = "streak_bonus"
    length: Literal[7, 30]
    streak_started_on: dt.date

    def dedupe_key(self, user_id: str) -> str:
        return f"{user_id}:streak_{self.length}:{self.streak_started_on.isoformat()}"


PointsEvent = Annotated[
    AffirmationConfirmed
    | ActionCompleted
    | TimelineFinished
    | DailyLogin
    | Milestone
    | Referral
    | SocialShare
    | Feedback
    | StreakBonus,
    Field(discriminator="kind"),
]

# Événements qu'un client peut soumettre directement (les autres passent par les services)
ClientPointsEvent = Annotated[
    DailyLogin | Referral | SocialShare | Feedback,
    Field(discriminator="kind"),
]

points_event_adapter: TypeAdapter[PointsEvent] = TypeAdapter(PointsEvent)


def ledger_event_type(event: PointsEvent) -> str:
    """Type d'écriture du registre (clé du barème `POINTS_RULES`)."""
    if isinstance(event, Milestone):
        return event.milestone
    if isinstance(event, StreakBonus):
        return f"streak_{event.length}"
    return event.kind
