"""
Routes des timelines: génération, consultation, suppression, affirmations et actions.

La génération accepte un utilisateur authentifié ou un appelant anonyme; la progression
(affirmations confirmées, actions réalisées) est réservée aux utilisateurs authentifiés.
"""

from fastapi import APIRouter, Depends, Response

from transit_timeline.api.deps import get_caller, get_container, get_user
from transit_timeline.api.schemas import (
    AffirmationConfirmRequest,
    AffirmationToday,
    GenerationResponse,
    PointsAwardResponse,
    TimelineRequest,
    TimelineSummary,
    TimelineView,
)
from transit_timeline.core.container import Container
from transit_timeline.core.http_constants import HTTP_CREATED, HTTP_NO_CONTENT
from transit_timeline.domain.entities import Caller, GenerationRequest

router = APIRouter(prefix="/timelines", tags=["timelines"])
caller_dep = Depends(get_caller)
user_dep = Depends(get_user)
container_dep = Depends(get_container)


@router.post("", response_model=GenerationResponse, status_code=HTTP_CREATED)
def create_timeline(
    payload: TimelineRequest, caller: Caller = caller_dep, container: Container = container_dep
):
    """
    Génère une timeline d'actions alignées sur les transits.

    Erreurs: 402 (crédits épuisés), 403 (durée non autorisée), 422 (naissance invalide),
    502 (rédaction impossible), 503 (éphémérides indisponibles).
    """
    request = GenerationRequest(
        outcome_goal=payload.outcome_goal,
        context=payload.context,
        approach=payload.approach,
        timeframe_months=payload.timeframe_months,
        birth=payload.birth.to_domain(),
        start_date=payload.start_date,
    )
    result = container.timelines.generate_timeline(caller, request)
    points = result.points
    return GenerationResponse(
        timeline=TimelineView(**container.progress.render_timeline(caller, result.timeline)),
        warnings=[w.to_dict() for w in result.warnings],
        credits_remaining=result.credits_remaining,
        points_awarded=points.awarded if points else 0,
        level_up=points.level_up.to_dict() if points and points.level_up else None,
    )


@router.get("", response_model=list[TimelineSummary])
def list_timelines(caller: Caller = caller_dep, container: Container = container_dep):
    """Timelines de l'appelant, la plus récente d'abord."""
    return [
        TimelineSummary(
            id=t.id,
            outcome_goal=t.outcome_goal,
            timeframe_months=t.timeframe_months,
            start_date=t.start_date,
            end_date=t.end_date,
            created_at=t.created_at,
            actions_count=len(t.actions),
        )
        for t in container.timelines.list_timelines(caller)
    ]


@router.get("/{timeline_id}", response_model=TimelineView)
def get_timeline(
    timeline_id: str, caller: Caller = caller_dep, container: Container = container_dep
):
    timeline = container.timelines.get_owned(caller, timeline_id)
    return TimelineView(**container.progress.render_timeline(caller, timeline))


@router.delete("/{timeline_id}", status_code=HTTP_NO_CONTENT)
def delete_timeline(
    timeline_id: str, caller: Caller = caller_dep, container: Container = container_dep
):
    container.timelines.delete_timeline(caller, timeline_id)
    return Response(status_code=HTTP_NO_CONTENT)


@router.get("/{timeline_id}/affirmations/today", response_model=AffirmationToday)
def today_affirmation(
    timeline_id: str, caller: Caller = caller_dep, container: Container = container_dep
):
    """Affirmation du jour de la timeline et état de confirmation."""
    return container.progress.today_affirmation(caller, timeline_id)


@router.post("/{timeline_id}/affirmations", response_model=PointsAwardResponse)
def confirm_affirmation(
    timeline_id: str,
    payload: AffirmationConfirmRequest | None = None,
    user: Caller = user_dep,
    container: Container = container_dep,
):
    """Confirme l'affirmation du jour (+5 points, une fois par jour et par timeline)."""
    day_key = payload.day_key if payload else None
    return container.progress.confirm_affirmation(user, timeline_id, day_key)


@router.post("/{timeline_id}/actions/{action_index}/complete", response_model=PointsAwardResponse)
def complete_action(
    timeline_id: str,
    action_index: int,
    user: Caller = user_dep,
    container: Container = container_dep,
):
    """Marque une action comme réalisée (+10 points, bonus de jalon et de fin de timeline)."""
    return container.progress.complete_action(user, timeline_id, action_index)
