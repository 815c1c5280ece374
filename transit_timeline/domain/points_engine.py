"""
Moteur de points et de niveaux.

Chaque événement (union fermée `PointsEvent`) passe par un unique handler exhaustif qui produit
les écritures du registre et le nouvel état de l'utilisateur. L'ensemble est validé en une
seule écriture conditionnelle (version de l'état + unicité des clés de déduplication):
- un événement déjà enregistré ne rapporte rien (`already_recorded`);
- les bonus dérivés (série, jalons, fin de timeline) sont ajoutés dans la même écriture;
- le niveau est recalculé à chaque mutation et ne dépasse jamais ce que les points justifient.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, assert_never

import structlog

from transit_timeline.app.metrics import (
    CAS_CONFLICTS_TOTAL,
    LEVEL_UPS_TOTAL,
    POINTS_AWARDED_TOTAL,
    POINTS_DEDUPED_TOTAL,
)
from transit_timeline.domain.entities import PointsLedgerEntry, UserLevelState
from transit_timeline.domain.errors import ConcurrentModificationError, InvalidEventError
from transit_timeline.domain.events import (
    ActionCompleted,
    AffirmationConfirmed,
    DailyLogin,
    Feedback,
    Milestone,
    PointsEvent,
    Referral,
    SocialShare,
    StreakBonus,
    TimelineFinished,
    ledger_event_type,
)
from transit_timeline.domain.levels import (
    ACTION_MILESTONES,
    POINTS_RULES,
    STREAK_THRESHOLDS,
    level_for_points,
    level_progress,
)


@dataclass(frozen=True)
class LevelUp:
    """Notification de passage de niveau."""

    user_id: str
    previous_level: int
    new_level: int
    level_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "previous_level": self.previous_level,
            "new_level": self.new_level,
            "level_name": self.level_name,
        }


@dataclass
class PointsResult:
    """Résultat du traitement d'un événement de points."""

    awarded: int
    already_recorded: bool
    state: UserLevelState
    entries: list[PointsLedgerEntry] = field(default_factory=list)
    level_up: LevelUp | None = None


LevelUpListener = Callable[[LevelUp], None]


class PointsEngine:
    """Attribue les points, tient les séries et calcule les niveaux."""

    def __init__(
        self,
        repo,
        clock: Callable[[], dt.datetime] = lambda: dt.datetime.now(dt.UTC),
        cas_max_attempts: int = 5,
        listeners: list[LevelUpListener] | None = None,
    ) -> None:
        self.repo = repo
        self._clock = clock
        self.cas_max_attempts = max(1, cas_max_attempts)
        self._listeners: list[LevelUpListener] = list(listeners or [])
        self._log = structlog.get_logger(__name__).bind(component="points_engine")

    def add_listener(self, listener: LevelUpListener) -> None:
        self._listeners.append(listener)

    def record(self, user_id: str, event: PointsEvent) -> PointsResult:
        """
        Traite `event` pour `user_id` de façon atomique et idempotente.

        Raises:
            InvalidEventError: événement quotidien daté d'un autre jour que le jour UTC courant.
            ConcurrentModificationError: conflit persistant sur l'état de l'utilisateur.
        """
        self._check_day(event)
        dedupe_key = event.dedupe_key(user_id)
        for _ in range(self.cas_max_attempts):
            state, version = self.repo.load(user_id)
            if self.repo.has_entry(dedupe_key):
                POINTS_DEDUPED_TOTAL.labels(event_type=ledger_event_type(event)).inc()
                return PointsResult(awarded=0, already_recorded=True, state=state)

            now = self._clock()
            entries, new_state = self._apply(user_id, event, state, now)
            level_up = self._relevel(state, new_state, now)
            if self.repo.commit(user_id, version, entries, new_state):
                return self._committed(entries, new_state, level_up)
            CAS_CONFLICTS_TOTAL.labels(resource="points").inc()

        self._log.warning("points_commit_conflict", event_kind=event.kind)
        raise ConcurrentModificationError(
            "level state changed concurrently", details={"resource": "points"}
        )

    def get_level_state(self, user_id: str) -> dict[str, Any]:
        """État de niveau enrichi de la progression vers le palier suivant."""
        state, _ = self.repo.load(user_id)
        return {
            **level_progress(state.lifetime_points),
            "user_id": user_id,
            "lifetime_points": state.lifetime_points,
            "level_achieved_at": state.level_achieved_at,
            "current_streak": state.current_streak,
            "longest_streak": state.longest_streak,
            "completed_actions": state.completed_actions,
        }

    def ledger(self, user_id: str, limit: int | None = 50) -> list[PointsLedgerEntry]:
        return self.repo.entries(user_id, limit=limit)

    def leaderboard(self, limit: int = 100) -> list[dict[str, Any]]:
        """Classement par points cumulés (rang à partir de 1)."""
        rows = []
        for rank, state in enumerate(self.repo.top(limit), start=1):
            lvl = level_for_points(state.lifetime_points)
            rows.append(
                {
                    "rank": rank,
                    "user_id": state.user_id,
                    "lifetime_points": state.lifetime_points,
                    "level": lvl.level,
                    "level_name": lvl.name,
                }
            )
        return rows

    def has_recorded(self, user_id: str, event: PointsEvent) -> bool:
        return self.repo.has_entry(event.dedupe_key(user_id))

    def _check_day(self, event: PointsEvent) -> None:
        # Récompenses quotidiennes: uniquement pour le jour UTC courant de l'horloge
        if not isinstance(event, (AffirmationConfirmed, DailyLogin)):
            return
        today = self._clock().date()
        if event.day_key != today:
            raise InvalidEventError(
                "daily events must be dated today",
                details={"day_key": event.day_key.isoformat(), "today": today.isoformat()},
            )

    # ------------------------------------------------------------------
    # Handler
    # ------------------------------------------------------------------

    def _apply(
        self,
        user_id: str,
        event: PointsEvent,
        state: UserLevelState,
        now: dt.datetime,
    ) -> tuple[list[PointsLedgerEntry], UserLevelState]:
        new_state = state.model_copy()
        entries = [self._entry(user_id, event, now)]

        if isinstance(event, (AffirmationConfirmed, DailyLogin)):
            self._touch_streak(new_state, now.date())
            entries.extend(self._streak_bonuses(user_id, new_state, now))
        elif isinstance(event, ActionCompleted):
            new_state.completed_actions += 1
            entries.extend(self._action_awards(user_id, event, new_state, now))
        elif isinstance(
            event, (TimelineFinished, Milestone, Referral, SocialShare, Feedback, StreakBonus)
        ):
            pass
        else:
            assert_never(event)

        new_state.lifetime_points += sum(e.points for e in entries)
        return entries, new_state

    @staticmethod
    def _entry(user_id: str, event: PointsEvent, now: dt.datetime) -> PointsLedgerEntry:
        event_type = ledger_event_type(event)
        return PointsLedgerEntry(
            user_id=user_id,
            event_type=event_type,
            points=POINTS_RULES[event_type],
            dedupe_key=event.dedupe_key(user_id),
            occurred_at=now,
            timeline_id=getattr(event, "timeline_id", None),
        )

    @staticmethod
    def _touch_streak(state: UserLevelState, today: dt.date) -> None:
        last = state.last_active_day
        if last == today and state.current_streak > 0:
            return
        if last is not None and last == today - dt.timedelta(days=1):
            state.current_streak += 1
        else:
            state.current_streak = 1
            state.streak_started_on = today
        state.last_active_day = today
        state.longest_streak = max(state.longest_streak, state.current_streak)

    def _streak_bonuses(
        self, user_id: str, state: UserLevelState, now: dt.datetime
    ) -> list[PointsLedgerEntry]:
        bonuses = []
        for length in STREAK_THRESHOLDS:
            if state.current_streak != length or state.streak_started_on is None:
                continue
            bonus = StreakBonus(length=length, streak_started_on=state.streak_started_on)
            if not self.repo.has_entry(bonus.dedupe_key(user_id)):
                bonuses.append(self._entry(user_id, bonus, now))
        return bonuses

    def _action_awards(
        self,
        user_id: str,
        event: ActionCompleted,
        state: UserLevelState,
        now: dt.datetime,
    ) -> list[PointsLedgerEntry]:
        awards = []
        name = ACTION_MILESTONES.get(state.completed_actions)
        if name is not None:
            milestone = Milestone(milestone=name)
            if not self.repo.has_entry(milestone.dedupe_key(user_id)):
                awards.append(self._entry(user_id, milestone, now))

        count = event.timeline_action_count
        if count is not None and event.action_index < count:
            others_done = all(
                self.repo.has_entry(
                    ActionCompleted(timeline_id=event.timeline_id, action_index=i).dedupe_key(
                        user_id
                    )
                )
                for i in range(count)
                if i != event.action_index
            )
            finished = TimelineFinished(timeline_id=event.timeline_id)
            if others_done and not self.repo.has_entry(finished.dedupe_key(user_id)):
                awards.append(self._entry(user_id, finished, now))
        return awards

    @staticmethod
    def _relevel(
        before: UserLevelState, after: UserLevelState, now: dt.datetime
    ) -> LevelUp | None:
        lvl = level_for_points(after.lifetime_points)
        after.current_level = lvl.level
        if lvl.level <= before.current_level:
            return None
        after.level_achieved_at = now
        return LevelUp(
            user_id=after.user_id,
            previous_level=before.current_level,
            new_level=lvl.level,
            level_name=lvl.name,
        )

    def _committed(
        self,
        entries: list[PointsLedgerEntry],
        state: UserLevelState,
        level_up: LevelUp | None,
    ) -> PointsResult:
        for entry in entries:
            POINTS_AWARDED_TOTAL.labels(event_type=entry.event_type).inc(entry.points)
        if level_up is not None:
            LEVEL_UPS_TOTAL.labels(level=str(level_up.new_level)).inc()
            self._log.info(
                "level_up",
                user_id=level_up.user_id,
                previous_level=level_up.previous_level,
                new_level=level_up.new_level,
            )
            for listener in self._listeners:
                try:
                    listener(level_up)
                except Exception:
                    # Le commit est déjà effectué: un abonné défaillant ne l'annule pas
                    self._log.exception("level_up_listener_failed")
        return PointsResult(
            awarded=sum(e.points for e in entries),
            already_recorded=False,
            state=state,
            entries=entries,
            level_up=level_up,
        )
