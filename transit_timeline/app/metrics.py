"""
Métriques Prometheus pour l'application.

Ce module définit les métriques HTTP et métier (génération de timelines, crédits, points) et
expose `/metrics`.
"""

import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

metrics_router = APIRouter()

REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "route", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Latency of HTTP requests", ["route"]
)

# Timeline generation
TIMELINES_GENERATED_TOTAL = Counter(
    "timelines_generated_total",
    "Timelines successfully generated and persisted",
    ["tier", "timeframe"],
)
TIMELINE_GENERATION_FAILURES_TOTAL = Counter(
    "timeline_generation_failures_total",
    "Timeline generations rejected or aborted",
    ["code"],
)
TIMELINE_DEGENERATE_TOTAL = Counter(
    "timeline_degenerate_total",
    "Timelines generated with fewer actions than requested",
)
TIMELINE_GENERATION_LATENCY = Histogram(
    "timeline_generation_seconds",
    "End-to-end latency of timeline generation",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

# Credits
CREDITS_DEBITED_TOTAL = Counter(
    "credits_debited_total", "Credits consumed by generations", ["tier"]
)
CREDITS_RESTORED_TOTAL = Counter(
    "credits_restored_total", "Credits restored after a failed generation", ["tier"]
)

# Points
POINTS_AWARDED_TOTAL = Counter(
    "points_awarded_total", "Points written to the ledger", ["event_type"]
)
POINTS_DEDUPED_TOTAL = Counter(
    "points_deduped_total", "Points events ignored as already recorded", ["event_type"]
)
LEVEL_UPS_TOTAL = Counter("level_ups_total", "Level-up notifications emitted", ["level"])

# Concurrency / external calls
CAS_CONFLICTS_TOTAL = Counter(
    "cas_conflicts_total", "Compare-and-swap conflicts on shared records", ["resource"]
)
EXTERNAL_RETRIES_TOTAL = Counter(
    "external_retries_total", "Retries issued against external services", ["target"]
)


@metrics_router.get("/metrics")
def metrics():
    """
    Expose les métriques Prometheus au format texte.

    Returns:
        Response: Réponse HTTP contenant les métriques au format Prometheus.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def route_label(request: Request) -> str:
    """Libellé de route à faible cardinalité (gabarit plutôt que chemin brut)."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware Prometheus pour mesurer les métriques HTTP.

    Collecte les métriques de comptage des requêtes et de latence par route pour l'exposition
    Prometheus.
    """

    async def dispatch(self, request: Request, call_next):
        """Traite une requête HTTP et collecte les métriques."""
        start = time.perf_counter()
        response: Response = await call_next(request)
        route = route_label(request)
        REQUEST_COUNT.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(route).observe(time.perf_counter() - start)
        return response
