"""
Assemblage des timelines.

`TimelineService` orchestre une génération complète:
validation → contrôle du tier → débit d'un crédit → profil natal → balayage des transits →
classement → rédaction des actions → affirmations → persistance. Tout échec après le débit
restitue le crédit et ne persiste rien.
"""

from __future__ import annotations

import datetime as dt
import math
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from transit_timeline.app.metrics import (
    TIMELINE_DEGENERATE_TOTAL,
    TIMELINE_GENERATION_FAILURES_TOTAL,
    TIMELINE_GENERATION_LATENCY,
    TIMELINES_GENERATED_TOTAL,
)
from transit_timeline.domain import affirmations as aff
from transit_timeline.domain.entities import (
    ActionSlot,
    Caller,
    GenerationRequest,
    NatalProfile,
    SubscriptionTier,
    Timeline,
)
from transit_timeline.domain.entitlements import EntitlementGate
from transit_timeline.domain.errors import (
    ActionSynthesisFailedError,
    DegenerateTimelineWarning,
    TimelineError,
    TimelineNotFoundError,
)
from transit_timeline.domain.events import Milestone
from transit_timeline.domain.natal import NatalProfileResolver
from transit_timeline.domain.points_engine import PointsEngine, PointsResult
from transit_timeline.domain.ranking import FavorabilityRanker, RankedDate, target_action_count
from transit_timeline.domain.transits import scan_transits
from transit_timeline.infra.ephemeris.base import EphemerisOracle
from transit_timeline.infra.retry import NO_RETRY, RetryPolicy, call_external
from transit_timeline.infra.synthesizer import ActionPrompt, ActionSynthesizer


def total_days_for(timeframe_months: int) -> int:
    """Nombre de jours couverts par une timeline de `timeframe_months` mois."""
    return math.floor(timeframe_months * 30.5)


@dataclass
class GenerationResult:
    """Timeline générée, avertissements non bloquants et effets annexes."""

    timeline: Timeline
    warnings: list[DegenerateTimelineWarning] = field(default_factory=list)
    credits_remaining: int | None = None
    points: PointsResult | None = None


class TimelineService:
    """Service métier de génération et de consultation des timelines.

    Responsabilités:
    - Appliquer l'ordre de génération et la compensation du crédit en cas d'échec.
    - Rédiger chaque action séquentiellement (ordre des dates préservé).
    - Retomber sur le pool d'affirmations intégré si le service de texte échoue.
    """

    def __init__(
        self,
        gate: EntitlementGate,
        resolver: NatalProfileResolver,
        oracle: EphemerisOracle,
        synthesizer: ActionSynthesizer,
        timeline_repo,
        points: PointsEngine | None = None,
        ranker: FavorabilityRanker | None = None,
        ephemeris_retry: RetryPolicy = NO_RETRY,
        synthesis_retry: RetryPolicy = NO_RETRY,
        clock: Callable[[], dt.datetime] = lambda: dt.datetime.now(dt.UTC),
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.gate = gate
        self.resolver = resolver
        self.oracle = oracle
        self.synthesizer = synthesizer
        self.timelines = timeline_repo
        self.points = points
        self.ranker = ranker or FavorabilityRanker()
        self.ephemeris_retry = ephemeris_retry
        self.synthesis_retry = synthesis_retry
        self._clock = clock
        self._new_id = id_factory
        self._log = structlog.get_logger(__name__).bind(component="timeline_service")

    # ------------------------------------------------------------------
    # Génération
    # ------------------------------------------------------------------

    def generate_timeline(self, caller: Caller, request: GenerationRequest) -> GenerationResult:
        """
        Génère et persiste une timeline pour `caller`.

        Raises:
            InvalidBirthDataError, TimeframeNotAllowedError, InsufficientCreditsError: avant
                tout débit.
            EphemerisUnavailableError, ActionSynthesisFailedError,
                ConcurrentModificationError: après débit, crédit restitué.
        """
        started = time.perf_counter()
        try:
            # Validation sans effet de bord
            self.resolver.birth_instant(request.birth)
            tier = self.gate.check(caller, request.timeframe_months)
            debited = self.gate.debit(caller)
        except TimelineError as e:
            TIMELINE_GENERATION_FAILURES_TOTAL.labels(code=e.code).inc()
            raise

        try:
            timeline, warnings = self._assemble(caller, tier, request)
            self.timelines.save(timeline)
        except BaseException as e:
            TIMELINE_GENERATION_FAILURES_TOTAL.labels(code=getattr(e, "code", "INTERNAL")).inc()
            self._compensate(caller, debited.period_key)
            raise

        TIMELINES_GENERATED_TOTAL.labels(
            tier=tier.name, timeframe=str(request.timeframe_months)
        ).inc()
        TIMELINE_GENERATION_LATENCY.observe(time.perf_counter() - started)
        self._log.info(
            "timeline_generated",
            timeline_id=timeline.id,
            tier=tier.name,
            actions=len(timeline.actions),
            degenerate=bool(warnings),
        )
        return GenerationResult(
            timeline=timeline,
            warnings=warnings,
            credits_remaining=debited.remaining,
            points=self._award_first_generation(caller),
        )

    def _assemble(
        self, caller: Caller, tier: SubscriptionTier, request: GenerationRequest
    ) -> tuple[Timeline, list[DegenerateTimelineWarning]]:
        now = self._clock()
        start = request.start_date or now.date()
        total_days = total_days_for(request.timeframe_months)
        end = start + dt.timedelta(days=total_days - 1)

        profile = self._natal_profile(caller, request)
        scan = scan_transits(self.oracle, profile, start, end, retry_policy=self.ephemeris_retry)
        target = target_action_count(request.timeframe_months, tier.max_actions)
        ranked = self.ranker.select(scan, target, start, end)

        warnings: list[DegenerateTimelineWarning] = []
        if len(ranked) < target:
            warnings.append(DegenerateTimelineWarning(requested=target, found=len(ranked)))
            TIMELINE_DEGENERATE_TOTAL.inc()

        # Séquentiel: l'ordre des dates est conservé tel quel
        actions = [self._synthesize(request, r) for r in ranked]
        timeline = Timeline(
            id=self._new_id(),
            owner_id=caller.id,
            owner_kind=caller.kind,
            outcome_goal=request.outcome_goal,
            context=request.context,
            approach=request.approach,
            timeframe_months=request.timeframe_months,
            start_date=start,
            end_date=end,
            actions=actions,
            affirmations=self._affirmations(request, total_days),
            created_at=now,
        )
        return timeline, warnings

    def _natal_profile(self, caller: Caller, request: GenerationRequest) -> NatalProfile:
        if caller.is_anonymous:
            return self.resolver.compute_transient(request.birth, caller.id)
        return self.resolver.resolve(caller.id, request.birth)

    def _synthesize(self, request: GenerationRequest, ranked: RankedDate) -> ActionSlot:
        prompt = ActionPrompt(
            goal=request.outcome_goal,
            context=request.context,
            approach=request.approach,
            date=ranked.date,
            transit=ranked.event,
        )
        draft = call_external(
            lambda: self.synthesizer.synthesize_action(prompt),
            target="action_synthesis",
            policy=self.synthesis_retry,
            on_exhausted=lambda exc: ActionSynthesisFailedError(
                "action synthesis failed", details={"date": ranked.date.isoformat()}
            ),
        )
        return ActionSlot(
            date=ranked.date,
            transit_summary=ranked.summary,
            transit=ranked.event,
            action_text=draft.action_text,
            strategy_text=draft.strategy_text,
            resource_links=draft.resource_links,
        )

    def _affirmations(self, request: GenerationRequest, total_days: int) -> list[str]:
        count = aff.stored_count(total_days)
        try:
            pool = call_external(
                lambda: self.synthesizer.synthesize_affirmations(
                    request.outcome_goal, request.context, count
                ),
                target="affirmations",
                policy=self.synthesis_retry,
                on_exhausted=lambda exc: ActionSynthesisFailedError("affirmation synthesis failed"),
            )
            return aff.rotate(pool, count)
        except (ActionSynthesisFailedError, ValueError):
            self._log.warning("affirmations_fallback", count=count)
            return aff.rotate(aff.fallback_affirmations(request.outcome_goal), count)

    def _compensate(self, caller: Caller, period_key: str) -> None:
        try:
            self.gate.restore(caller, period_key)
        except Exception:
            # L'erreur de génération reste celle qui remonte
            self._log.exception("credit_restore_failed", owner_kind=caller.kind)

    def _award_first_generation(self, caller: Caller) -> PointsResult | None:
        if caller.is_anonymous or self.points is None:
            return None
        try:
            return self.points.record(caller.id, Milestone(milestone="first_generation"))
        except TimelineError:
            # La génération est déjà persistée: un échec de points ne l'annule pas
            self._log.exception("first_generation_award_failed")
            return None

    # ------------------------------------------------------------------
    # Consultation
    # ------------------------------------------------------------------

    def get_owned(self, caller: Caller, timeline_id: str) -> Timeline:
        """Timeline `timeline_id` si elle appartient à `caller`, sinon `TimelineNotFoundError`."""
        timeline = self.timelines.get(timeline_id)
        if timeline is None or timeline.owner_id != caller.id:
            raise TimelineNotFoundError("timeline not found", details={"timeline_id": timeline_id})
        return timeline

    def list_timelines(self, caller: Caller) -> list[Timeline]:
        return self.timelines.list_for_owner(caller.id)

    def delete_timeline(self, caller: Caller, timeline_id: str) -> None:
        self.get_owned(caller, timeline_id)
        self.timelines.delete(timeline_id)
