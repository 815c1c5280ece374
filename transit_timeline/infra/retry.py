"""Politique de retry et appel générique des services externes.

Ce module définit une politique explicite (nombre de tentatives, courbe de backoff, jitter) et un
helper `call_external` qui classe chaque échec en retryable ou fatal. Les échecs retryables sont
rejoués avec backoff; à l'épuisement, l'erreur est convertie en erreur typée du domaine.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from transit_timeline.app.metrics import EXTERNAL_RETRIES_TOTAL
from transit_timeline.domain.errors import TimelineError

log = logging.getLogger(__name__)

T = TypeVar("T")


class RetryStrategy(Enum):
    """Stratégies de backoff disponibles."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


class TransientError(Exception):
    """Échec temporaire d'un service externe (timeout, indisponibilité)."""


def _default_is_retryable(exc: Exception) -> bool:
    # Les erreurs métier (validation, contenu invalide) ne sont jamais rejouées
    if isinstance(exc, TimelineError):
        return False
    return isinstance(exc, (TransientError, TimeoutError, ConnectionError, OSError))


@dataclass
class RetryPolicy:
    """Configuration des retries pour un appel externe."""

    max_attempts: int = 3
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    base_delay: float = 0.1
    max_delay: float = 2.0
    jitter: bool = True
    is_retryable: Callable[[Exception], bool] = field(default=_default_is_retryable)

    def delay_for(self, attempt: int) -> float:
        """Délai avant la tentative suivante (`attempt` commence à 0)."""
        if self.strategy == RetryStrategy.EXPONENTIAL:
            delay = self.base_delay * (2**attempt)
        elif self.strategy == RetryStrategy.LINEAR:
            delay = self.base_delay * (attempt + 1)
        else:  # FIXED
            delay = self.base_delay
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)
        return min(delay, self.max_delay)


NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0, jitter=False)


def call_external(
    fn: Callable[[], T],
    *,
    target: str,
    policy: RetryPolicy,
    on_exhausted: Callable[[Exception], TimelineError],
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Appelle `fn` selon `policy` et convertit l'échec final en erreur typée.

    Args:
        fn: Appel externe sans argument.
        target: Libellé du service (métriques/logs), ex. "ephemeris".
        policy: Politique de retry.
        on_exhausted: Fabrique l'erreur du domaine à partir de la dernière exception.
        sleep: Fonction d'attente (injectable pour les tests).

    Raises:
        TimelineError: erreur métier levée par `fn` (propagée telle quelle) ou produite par
            `on_exhausted` après échec non retryable ou épuisement des tentatives.
    """
    attempts = max(1, policy.max_attempts)
    for attempt in range(attempts):
        try:
            return fn()
        except TimelineError:
            raise
        except Exception as exc:
            retryable = policy.is_retryable(exc)
            last = attempt == attempts - 1
            if not retryable or last:
                log.warning(
                    "external_call_failed target=%s attempts=%d retryable=%s error=%s",
                    target,
                    attempt + 1,
                    retryable,
                    type(exc).__name__,
                )
                raise on_exhausted(exc) from exc
            EXTERNAL_RETRIES_TOTAL.labels(target=target).inc()
            sleep(policy.delay_for(attempt))
    raise AssertionError("unreachable")  # pragma: no cover
