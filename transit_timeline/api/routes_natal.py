"""
Routes du profil natal: enregistrement (upsert idempotent) et lecture.
"""

from fastapi import APIRouter, Depends

from transit_timeline.api.deps import get_container, get_user
from transit_timeline.api.schemas import BirthRequest, NatalResponse
from transit_timeline.apigw.errors import APIError
from transit_timeline.core.container import Container
from transit_timeline.core.http_constants import HTTP_NOT_FOUND
from transit_timeline.domain.entities import Caller, NatalProfile

router = APIRouter(prefix="/natal", tags=["natal"])
user_dep = Depends(get_user)
container_dep = Depends(get_container)


def _to_response(profile: NatalProfile) -> NatalResponse:
    return NatalResponse(
        user_id=profile.user_id,
        birth_instant=profile.birth_instant,
        timezone=profile.timezone,
        planet_longitudes={p.value: lon for p, lon in profile.planet_longitudes.items()},
        computed_at=profile.computed_at,
    )


@router.put("", response_model=NatalResponse)
def upsert_natal(
    payload: BirthRequest, user: Caller = user_dep, container: Container = container_dep
):
    """Calcule (ou reprend, si inchangé) le profil natal de l'utilisateur."""
    profile = container.resolver.resolve(user.id, payload.to_domain())
    return _to_response(profile)


@router.get("", response_model=NatalResponse)
def get_natal(user: Caller = user_dep, container: Container = container_dep):
    """Retourne le profil natal enregistré de l'utilisateur."""
    profile = container.profile_repo.get(user.id)
    if profile is None:
        raise APIError(
            HTTP_NOT_FOUND, "NATAL_PROFILE_NOT_FOUND", "no natal profile for this user"
        )
    return _to_response(profile)
