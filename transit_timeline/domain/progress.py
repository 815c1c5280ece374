"""
Progression de l'utilisateur sur ses timelines.

Affirmation du jour, confirmation d'affirmation, réalisation d'action, rendu d'une timeline selon
la visibilité du tier et statistiques de profil. Les points passent tous par le `PointsEngine`.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable
from typing import Any

from transit_timeline.domain import affirmations as aff
from transit_timeline.domain.entities import Caller, Timeline
from transit_timeline.domain.entitlements import EntitlementGate
from transit_timeline.domain.errors import InvalidEventError
from transit_timeline.domain.events import (
    ActionCompleted,
    AffirmationConfirmed,
    PointsEvent,
)
from transit_timeline.domain.points_engine import PointsEngine, PointsResult
from transit_timeline.domain.services import TimelineService


def _points_payload(result: PointsResult) -> dict[str, Any]:
    return {
        "points_awarded": result.awarded,
        "already_recorded": result.already_recorded,
        "level_up": result.level_up.to_dict() if result.level_up else None,
        "lifetime_points": result.state.lifetime_points,
        "current_level": result.state.current_level,
    }


class ProgressService:
    """Suivi des affirmations et des actions d'un utilisateur."""

    def __init__(
        self,
        timelines: TimelineService,
        points: PointsEngine,
        gate: EntitlementGate,
        clock: Callable[[], dt.datetime] = lambda: dt.datetime.now(dt.UTC),
    ) -> None:
        self.timelines = timelines
        self.points = points
        self.gate = gate
        self._clock = clock

    def today_affirmation(self, caller: Caller, timeline_id: str) -> dict[str, Any]:
        """Affirmation du jour (rotation sur les jours écoulés) et état de confirmation."""
        timeline = self.timelines.get_owned(caller, timeline_id)
        today = self._clock().date()
        index = aff.today_index(timeline.start_date, today, len(timeline.affirmations))
        confirmed = not caller.is_anonymous and self.points.has_recorded(
            caller.id, AffirmationConfirmed(timeline_id=timeline.id, day_key=today)
        )
        return {
            "timeline_id": timeline.id,
            "date": today,
            "index": index,
            "text": timeline.affirmations[index],
            "confirmed": confirmed,
        }

    def confirm_affirmation(
        self, caller: Caller, timeline_id: str, day_key: dt.date | None = None
    ) -> dict[str, Any]:
        """
        Confirme l'affirmation du jour UTC courant.

        `day_key`, s'il est fourni, doit désigner ce même jour. Idempotent: une seconde
        confirmation du même jour ne rapporte rien.

        Raises:
            InvalidEventError: `day_key` différent d'aujourd'hui, ou jour hors de la timeline.
        """
        timeline = self.timelines.get_owned(caller, timeline_id)
        day = self._clock().date()
        if day_key is not None and day_key != day:
            raise InvalidEventError(
                "affirmations can only be confirmed for the current day",
                details={"day_key": day_key.isoformat(), "today": day.isoformat()},
            )
        if not timeline.start_date <= day <= timeline.end_date:
            raise InvalidEventError(
                "day outside timeline range",
                details={
                    "day_key": day.isoformat(),
                    "start_date": timeline.start_date.isoformat(),
                    "end_date": timeline.end_date.isoformat(),
                },
            )
        result = self.points.record(
            caller.id, AffirmationConfirmed(timeline_id=timeline.id, day_key=day)
        )
        return _points_payload(result)

    def complete_action(
        self, caller: Caller, timeline_id: str, action_index: int
    ) -> dict[str, Any]:
        """
        Marque l'action `action_index` comme réalisée.

        Raises:
            InvalidEventError: index hors des actions de la timeline.
        """
        timeline = self.timelines.get_owned(caller, timeline_id)
        if not 0 <= action_index < len(timeline.actions):
            raise InvalidEventError(
                "action index out of range",
                details={"action_index": action_index, "actions": len(timeline.actions)},
            )
        result = self.points.record(
            caller.id,
            ActionCompleted(
                timeline_id=timeline.id,
                action_index=action_index,
                timeline_action_count=len(timeline.actions),
            ),
        )
        return _points_payload(result)

    def record_event(self, caller: Caller, event: PointsEvent) -> dict[str, Any]:
        """Enregistre un événement soumis directement par le client."""
        return _points_payload(self.points.record(caller.id, event))

    def completed_indexes(self, caller: Caller, timeline: Timeline) -> set[int]:
        if caller.is_anonymous:
            return set()
        return {
            i
            for i in range(len(timeline.actions))
            if self.points.has_recorded(
                caller.id, ActionCompleted(timeline_id=timeline.id, action_index=i)
            )
        }

    def render_timeline(self, caller: Caller, timeline: Timeline) -> dict[str, Any]:
        """
        Vue de la timeline selon la visibilité du tier.

        Sans `can_see_all_actions`, les actions réalisées et la première action non réalisée
        sont visibles; les suivantes ne montrent que leur date (`locked`).
        """
        tier = self.gate.tier(caller)
        done = self.completed_indexes(caller, timeline)
        first_open = next((i for i in range(len(timeline.actions)) if i not in done), None)

        actions: list[dict[str, Any]] = []
        for i, slot in enumerate(timeline.actions):
            visible = tier.can_see_all_actions or i in done or i == first_open
            if visible:
                full = slot.model_dump(mode="json")
                actions.append({**full, "index": i, "completed": i in done, "locked": False})
            else:
                actions.append(
                    {"index": i, "date": slot.date.isoformat(), "completed": False, "locked": True}
                )
        return {
            "id": timeline.id,
            "outcome_goal": timeline.outcome_goal,
            "context": timeline.context,
            "approach": timeline.approach,
            "timeframe_months": timeline.timeframe_months,
            "start_date": timeline.start_date.isoformat(),
            "end_date": timeline.end_date.isoformat(),
            "created_at": timeline.created_at.isoformat(),
            "actions": actions,
            "affirmations_count": len(timeline.affirmations),
        }

    def profile_stats(self, caller: Caller) -> dict[str, Any]:
        """Statistiques de profil: générations, actions réalisées, séries et points."""
        level = self.points.get_level_state(caller.id)
        return {
            "user_id": caller.id,
            "total_generations": len(self.timelines.list_timelines(caller)),
            "total_actions_completed": level["completed_actions"],
            "current_streak": level["current_streak"],
            "longest_streak": level["longest_streak"],
            "lifetime_points": level["lifetime_points"],
            "level": level["level"],
            "level_name": level["level_name"],
        }
