"""
Routes des crédits et des tiers d'abonnement.
"""

from fastapi import APIRouter, Depends

from transit_timeline.api.deps import get_caller, get_container
from transit_timeline.api.schemas import CreditsResponse, TierView
from transit_timeline.core.container import Container
from transit_timeline.domain.entities import Caller

router = APIRouter(tags=["credits"])
caller_dep = Depends(get_caller)
container_dep = Depends(get_container)


@router.get("/credits", response_model=CreditsResponse)
def get_credits(caller: Caller = caller_dep, container: Container = container_dep):
    """Solde de crédits de la période en cours (remis à zéro au changement de période)."""
    tier = container.gate.tier(caller)
    balance = container.gate.balance(caller)
    return CreditsResponse(
        tier=tier.name,
        remaining=balance.remaining,
        monthly_credits=tier.monthly_credits,
        period_key=balance.period_key,
    )


@router.get("/tiers", response_model=list[TierView])
def list_tiers(container: Container = container_dep):
    return [TierView(**t.model_dump()) for t in container.gate.tiers()]
