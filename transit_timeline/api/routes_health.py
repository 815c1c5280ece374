"""
Endpoint de santé pour vérifier la disponibilité de l'API et du backend.

Expose `/health` pour signaler l'état général de l'application, du stockage et de l'oracle.
"""

from fastapi import APIRouter, Depends

from transit_timeline.api.deps import get_container
from transit_timeline.core.container import Container

router = APIRouter(tags=["health"])


@router.get("/health")
def health(container: Container = Depends(get_container)):
    """Vérifie la disponibilité de l'API et le backend de stockage."""
    return {
        "status": "ok",
        "storage": container.storage_backend,
        "ephemeris": container.settings.EPHEMERIS_BACKEND,
        "ephemeris_cache_entries": len(container.ephemeris_cache),
    }
