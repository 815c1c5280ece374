"""
Routes des points et niveaux: état de niveau, registre, événements client, classement, profil.
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query

from transit_timeline.api.deps import get_container, get_user
from transit_timeline.api.schemas import (
    LeaderboardRow,
    LedgerEntryView,
    LevelResponse,
    PointsAwardResponse,
    ProfileStats,
)
from transit_timeline.core.container import Container
from transit_timeline.domain.entities import Caller
from transit_timeline.domain.events import ClientPointsEvent

router = APIRouter(prefix="/points", tags=["points"])
user_dep = Depends(get_user)
container_dep = Depends(get_container)


@router.get("/level", response_model=LevelResponse)
def get_level(user: Caller = user_dep, container: Container = container_dep):
    """Niveau courant, points cumulés et progression vers le palier suivant."""
    return container.points.get_level_state(user.id)


@router.get("/ledger", response_model=list[LedgerEntryView])
def get_ledger(
    limit: int = Query(50, ge=1, le=500),
    user: Caller = user_dep,
    container: Container = container_dep,
):
    """Dernières écritures du registre de points."""
    return [
        LedgerEntryView(
            event_type=e.event_type,
            points=e.points,
            occurred_at=e.occurred_at,
            timeline_id=e.timeline_id,
        )
        for e in container.points.ledger(user.id, limit=limit)
    ]


@router.post("/events", response_model=PointsAwardResponse)
def post_event(
    event: Annotated[ClientPointsEvent, Body()],
    user: Caller = user_dep,
    container: Container = container_dep,
):
    """
    Enregistre un événement client (connexion quotidienne, parrainage, partage, avis).

    Idempotent: un événement déjà compté renvoie `already_recorded=true` et 0 point.
    """
    return container.progress.record_event(user, event)


@router.get("/leaderboard", response_model=list[LeaderboardRow])
def leaderboard(
    limit: int = Query(100, ge=1, le=500),
    container: Container = container_dep,
):
    return container.points.leaderboard(limit=limit)


@router.get("/profile", response_model=ProfileStats)
def profile(user: Caller = user_dep, container: Container = container_dep):
    """Statistiques de profil: générations, actions réalisées, séries et points."""
    return container.progress.profile_stats(user)
