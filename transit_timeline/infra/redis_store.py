"""Accès Redis commun aux dépôts.

Chaque opération passe par `call_external`: coupures de connexion et timeouts sont rejoués avec
backoff, puis convertis en `StoreUnavailableError`. Les écritures conditionnelles (WATCH/EXEC)
ne font qu'une tentative, leur issue étant inconnue si la connexion tombe après EXEC.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

import redis

from transit_timeline.domain.errors import StoreUnavailableError
from transit_timeline.infra.retry import RetryPolicy, call_external

T = TypeVar("T")


def is_store_retryable(exc: Exception) -> bool:
    return isinstance(exc, (redis.ConnectionError, redis.TimeoutError))


def store_retry_policy(
    max_attempts: int = 3, base_delay: float = 0.05, max_delay: float = 0.5
) -> RetryPolicy:
    """Politique de retry des lectures et écritures idempotentes."""
    return RetryPolicy(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        is_retryable=is_store_retryable,
    )


class RedisRepo:
    """Base des dépôts Redis: client partagé et appels typés."""

    def __init__(
        self,
        url: str | None = None,
        client: redis.Redis | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.client = client or redis.Redis.from_url(url, decode_responses=True)
        self.retry_policy = retry_policy or store_retry_policy()
        self._single_attempt = RetryPolicy(
            max_attempts=1, base_delay=0.0, jitter=False, is_retryable=is_store_retryable
        )

    def _io(self, operation: str, fn: Callable[[], T], *, retry: bool = True) -> T:
        """Exécute `fn` (I/O Redis) ; `StoreUnavailableError` si le store reste injoignable."""
        return call_external(
            fn,
            target="redis",
            policy=self.retry_policy if retry else self._single_attempt,
            on_exhausted=lambda exc: StoreUnavailableError(
                "storage unavailable",
                details={"operation": operation, "error": type(exc).__name__},
            ),
        )
