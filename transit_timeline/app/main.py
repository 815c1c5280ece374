"""
Application principale FastAPI.

Ce module assemble les composants de l'application: middlewares, routes, gestion des erreurs et
métriques du service de timelines.

Responsabilités du module:
- Initialiser le logging structuré
- Construire l'application FastAPI avec son titre/debug et son conteneur
- Ajouter les middlewares (request id, timing, Prometheus)
- Monter les routers (santé, profil natal, timelines, points, crédits, métriques)
"""

from __future__ import annotations

from fastapi import FastAPI

from transit_timeline.api.routes_credits import router as credits_router
from transit_timeline.api.routes_health import router as health_router
from transit_timeline.api.routes_natal import router as natal_router
from transit_timeline.api.routes_points import router as points_router
from transit_timeline.api.routes_timelines import router as timelines_router
from transit_timeline.apigw.errors import register_error_handlers
from transit_timeline.app.metrics import PrometheusMiddleware, metrics_router
from transit_timeline.core.container import Container
from transit_timeline.core.logging import setup_logging
from transit_timeline.middlewares.request_id import RequestIDMiddleware
from transit_timeline.middlewares.timing import TimingMiddleware


def create_app(container: Container | None = None) -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Étapes:
    - Construit le conteneur (ou utilise celui fourni, ex. en test)
    - Configure le logging structuré (structlog)
    - Ajoute les middlewares utiles au debug/traçabilité
    - Publie les routes et les handlers d'erreurs
    """
    container = container or Container()
    settings = container.settings
    setup_logging(debug=settings.APP_DEBUG)
    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG)
    app.state.container = container
    register_error_handlers(app)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(TimingMiddleware)
    # Ajouté en dernier: enveloppe les autres, l'identifiant est posé en premier
    app.add_middleware(RequestIDMiddleware)
    app.include_router(health_router)
    app.include_router(natal_router)
    app.include_router(timelines_router)
    app.include_router(points_router)
    app.include_router(credits_router)
    app.include_router(metrics_router)
    return app
