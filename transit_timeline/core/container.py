"""
Conteneur d'injection de dépendances.

Instancie les composants centraux (settings, dépôts, oracle d'éphémérides, service de texte,
services métier) et choisit le stockage: Redis si `REDIS_URL` est joignable, mémoire sinon
(sauf `REQUIRE_REDIS`).
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable

import redis

from transit_timeline.core.settings import Settings, get_settings
from transit_timeline.domain.entities import AspectType
from transit_timeline.domain.entitlements import EntitlementGate, build_tiers
from transit_timeline.domain.natal import NatalProfileResolver
from transit_timeline.domain.points_engine import PointsEngine
from transit_timeline.domain.progress import ProgressService
from transit_timeline.domain.ranking import FavorabilityRanker
from transit_timeline.domain.services import TimelineService
from transit_timeline.infra.cache import TTLCache
from transit_timeline.infra.ephemeris.base import CachedEphemeris, EphemerisOracle
from transit_timeline.infra.ephemeris.linear import LinearEphemeris
from transit_timeline.infra.ephemeris.swiss import SwissEphemeris
from transit_timeline.infra.ledger import (
    InMemoryCreditRepo,
    InMemoryPointsRepo,
    RedisCreditRepo,
    RedisPointsRepo,
)
from transit_timeline.infra.llm.openai_client import OpenAILLM
from transit_timeline.infra.redis_store import store_retry_policy
from transit_timeline.infra.repositories import (
    InMemoryNatalProfileRepo,
    InMemoryTimelineRepo,
    RedisNatalProfileRepo,
    RedisTimelineRepo,
)
from transit_timeline.infra.retry import RetryPolicy
from transit_timeline.infra.synthesizer import (
    ActionSynthesizer,
    LLMActionSynthesizer,
    TemplateActionSynthesizer,
)

log = logging.getLogger(__name__)


class Container:
    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], dt.datetime] | None = None,
        oracle: EphemerisOracle | None = None,
        synthesizer: ActionSynthesizer | None = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings
        self.clock = clock or (lambda: dt.datetime.now(dt.UTC))
        self._init_storage()

        # Cache possédé par le conteneur et injecté dans l'oracle
        self.ephemeris_cache = TTLCache(
            ttl_seconds=s.EPHEMERIS_CACHE_TTL_S, max_entries=s.EPHEMERIS_CACHE_MAX_ENTRIES
        )
        self.oracle = CachedEphemeris(oracle or self._build_oracle(), self.ephemeris_cache)
        self.synthesizer = synthesizer or self._build_synthesizer()
        self.external_retry = RetryPolicy(
            max_attempts=s.EXTERNAL_MAX_ATTEMPTS,
            base_delay=s.EXTERNAL_BASE_DELAY_S,
            max_delay=s.EXTERNAL_MAX_DELAY_S,
        )

        self.gate = EntitlementGate(
            self.credit_repo,
            tiers=build_tiers(
                anonymous_credits=s.ANONYMOUS_CREDITS,
                free_credits=s.FREE_MONTHLY_CREDITS,
                premium_credits=s.PREMIUM_MONTHLY_CREDITS,
            ),
            clock=self.clock,
            cas_max_attempts=s.CAS_MAX_ATTEMPTS,
        )
        self.resolver = NatalProfileResolver(
            self.oracle, self.profile_repo, retry_policy=self.external_retry, now=self.clock
        )
        self.points = PointsEngine(
            self.points_repo, clock=self.clock, cas_max_attempts=s.CAS_MAX_ATTEMPTS
        )
        self.timelines = TimelineService(
            gate=self.gate,
            resolver=self.resolver,
            oracle=self.oracle,
            synthesizer=self.synthesizer,
            timeline_repo=self.timeline_repo,
            points=self.points,
            ranker=FavorabilityRanker(
                {AspectType(k): w for k, w in s.aspect_weights.items()}
            ),
            ephemeris_retry=self.external_retry,
            synthesis_retry=self.external_retry,
            clock=self.clock,
        )
        self.progress = ProgressService(self.timelines, self.points, self.gate, clock=self.clock)

    def _init_storage(self) -> None:
        url = self.settings.REDIS_URL
        if url:
            try:
                client = redis.Redis.from_url(url, decode_responses=True)
                client.ping()
                self._use_redis(client)
                self.storage_backend = "redis"
                return
            except redis.RedisError as err:
                if self.settings.REQUIRE_REDIS:
                    raise RuntimeError("Redis required but unavailable") from err
                log.warning("redis_unavailable_fallback_memory error=%s", type(err).__name__)
                self._use_memory()
                self.storage_backend = "memory-fallback"
                return
        if self.settings.REQUIRE_REDIS:
            raise RuntimeError("Redis required but REDIS_URL not set")
        self._use_memory()
        self.storage_backend = "memory"

    def _use_redis(self, client: redis.Redis) -> None:
        s = self.settings
        policy = store_retry_policy(
            max_attempts=s.STORE_MAX_ATTEMPTS,
            base_delay=s.STORE_BASE_DELAY_S,
            max_delay=s.STORE_MAX_DELAY_S,
        )
        self.profile_repo = RedisNatalProfileRepo(client=client, retry_policy=policy)
        self.timeline_repo = RedisTimelineRepo(client=client, retry_policy=policy)
        self.credit_repo = RedisCreditRepo(client=client, retry_policy=policy)
        self.points_repo = RedisPointsRepo(client=client, retry_policy=policy)

    def _use_memory(self) -> None:
        self.profile_repo = InMemoryNatalProfileRepo()
        self.timeline_repo = InMemoryTimelineRepo()
        self.credit_repo = InMemoryCreditRepo()
        self.points_repo = InMemoryPointsRepo()

    def _build_oracle(self) -> EphemerisOracle:
        if self.settings.EPHEMERIS_BACKEND == "linear":
            return LinearEphemeris()
        path = self.settings.EPHEMERIS_PATH
        return SwissEphemeris(ephe_path=path, use_moshier=not path)

    def _build_synthesizer(self) -> ActionSynthesizer:
        key = self.settings.OPENAI_API_KEY
        if not key:
            log.info("openai_key_missing_using_template_synthesizer")
            return TemplateActionSynthesizer()
        llm = OpenAILLM(
            api_key=key, model=self.settings.LLM_MODEL, timeout_s=self.settings.LLM_TIMEOUT_S
        )
        return LLMActionSynthesizer(llm)
