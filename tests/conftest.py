"""Configuration de test pour pytest avec gestion des chemins.

Ce module configure pytest pour résoudre les imports `transit_timeline` en ajoutant la racine du
projet au sys.path, et fournit les fixtures communes (horloge figée, dépôts en mémoire, services).
"""

import datetime as dt
import os
import sys

import pytest

# Ensure project root is on sys.path so that
# imports like `from transit_timeline...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from tests.fakes import FakeSynthesizer, FrozenClock  # noqa: E402
from transit_timeline.core.container import Container  # noqa: E402
from transit_timeline.core.settings import Settings  # noqa: E402
from transit_timeline.domain.entitlements import EntitlementGate  # noqa: E402
from transit_timeline.domain.entities import BirthInput, Caller  # noqa: E402
from transit_timeline.domain.natal import NatalProfileResolver  # noqa: E402
from transit_timeline.domain.points_engine import PointsEngine  # noqa: E402
from transit_timeline.domain.progress import ProgressService  # noqa: E402
from transit_timeline.domain.services import TimelineService  # noqa: E402
from transit_timeline.infra.ephemeris.linear import LinearEphemeris  # noqa: E402
from transit_timeline.infra.ledger import InMemoryCreditRepo, InMemoryPointsRepo  # noqa: E402
from transit_timeline.infra.repositories import (  # noqa: E402
    InMemoryNatalProfileRepo,
    InMemoryTimelineRepo,
)
from transit_timeline.infra.retry import RetryPolicy  # noqa: E402

NOW = dt.datetime(2024, 3, 10, 9, 30, tzinfo=dt.UTC)


@pytest.fixture
def clock() -> FrozenClock:
    """Horloge figée au 2024-03-10 09:30 UTC, avançable par les tests."""
    return FrozenClock(NOW)


@pytest.fixture
def birth() -> BirthInput:
    return BirthInput(date="1990-06-15", time="14:30", tz="Europe/Paris", lat=48.85, lon=2.35)


@pytest.fixture
def free_user() -> Caller:
    return Caller(kind="user", id="user-free", tier="free")


@pytest.fixture
def premium_user() -> Caller:
    return Caller(kind="user", id="user-premium", tier="premium")


@pytest.fixture
def anonymous() -> Caller:
    return Caller(kind="anonymous", id="anon:abc", tier="anonymous")


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Politique de retry sans attente."""
    return RetryPolicy(max_attempts=2, base_delay=0.0, jitter=False)


@pytest.fixture
def points_repo() -> InMemoryPointsRepo:
    return InMemoryPointsRepo()


@pytest.fixture
def credit_repo() -> InMemoryCreditRepo:
    return InMemoryCreditRepo()


@pytest.fixture
def timeline_repo() -> InMemoryTimelineRepo:
    return InMemoryTimelineRepo()


@pytest.fixture
def profile_repo() -> InMemoryNatalProfileRepo:
    return InMemoryNatalProfileRepo()


@pytest.fixture
def points(points_repo, clock) -> PointsEngine:
    return PointsEngine(points_repo, clock=clock)


@pytest.fixture
def gate(credit_repo, clock) -> EntitlementGate:
    return EntitlementGate(credit_repo, clock=clock)


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def make_service(gate, synthesizer, timeline_repo, profile_repo, points, clock, fast_retry):
    """Fabrique de `TimelineService`; chaque dépendance peut être remplacée par mot-clé."""

    def _make(**overrides) -> TimelineService:
        oracle = overrides.get("oracle") or LinearEphemeris()
        resolver = NatalProfileResolver(
            oracle, profile_repo, retry_policy=fast_retry, now=clock
        )
        ids = iter(f"tl-{i}" for i in range(1, 1000))
        return TimelineService(
            gate=overrides.get("gate", gate),
            resolver=resolver,
            oracle=oracle,
            synthesizer=overrides.get("synthesizer", synthesizer),
            timeline_repo=timeline_repo,
            points=overrides.get("points", points),
            ephemeris_retry=fast_retry,
            synthesis_retry=fast_retry,
            clock=clock,
            id_factory=lambda: next(ids),
        )

    return _make


@pytest.fixture
def service(make_service) -> TimelineService:
    """Service de génération branché sur l'oracle linéaire et des dépôts en mémoire."""
    return make_service()


@pytest.fixture
def progress(service, points, gate, clock) -> ProgressService:
    return ProgressService(service, points, gate, clock=clock)


@pytest.fixture
def container(clock) -> Container:
    """Conteneur complet en mémoire (oracle linéaire, rédaction déterministe)."""
    settings = Settings(
        _env_file=None,
        REDIS_URL=None,
        REQUIRE_REDIS=False,
        OPENAI_API_KEY=None,
        EPHEMERIS_BACKEND="linear",
        EXTERNAL_BASE_DELAY_S=0.0,
        JWT_SECRET="test-secret",
        APP_DEBUG=False,
    )
    return Container(settings=settings, clock=clock)
