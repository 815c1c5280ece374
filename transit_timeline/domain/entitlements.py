"""
Gestion des entitlements: tiers d'abonnement et crédits de génération.

Ce module vérifie qu'un appelant peut demander une timeline d'une durée donnée et débite ou
restitue ses crédits. Les soldes sont partagés entre requêtes concurrentes: chaque écriture
passe par un compare-and-set sur la version du solde, rejoué un nombre borné de fois.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable

import structlog

from transit_timeline.app.metrics import (
    CAS_CONFLICTS_TOTAL,
    CREDITS_DEBITED_TOTAL,
    CREDITS_RESTORED_TOTAL,
)
from transit_timeline.domain.entities import (
    ALLOWED_TIMEFRAMES,
    Caller,
    CreditBalance,
    SubscriptionTier,
    TierName,
)
from transit_timeline.domain.errors import (
    ConcurrentModificationError,
    InsufficientCreditsError,
    TimeframeNotAllowedError,
)

ROLLING_WINDOW_DAYS = 30


def build_tiers(
    anonymous_credits: int = 1,
    free_credits: int = 3,
    premium_credits: int = 30,
) -> dict[TierName, SubscriptionTier]:
    """Table statique des tiers (crédits paramétrables par configuration)."""
    return {
        "anonymous": SubscriptionTier(
            name="anonymous",
            max_timeframe_months=3,
            monthly_credits=anonymous_credits,
            credit_period="rolling_30d",
        ),
        "free": SubscriptionTier(
            name="free",
            max_timeframe_months=3,
            monthly_credits=free_credits,
        ),
        "premium": SubscriptionTier(
            name="premium",
            max_timeframe_months=12,
            monthly_credits=premium_credits,
            can_see_all_actions=True,
        ),
    }


def current_period_key(
    tier: SubscriptionTier, today: dt.date, existing: CreditBalance | None = None
) -> str:
    """
    Clé de la période de crédits en cours.

    - `calendar_month`: `YYYY-MM` du jour UTC.
    - `rolling_30d`: date de début de la fenêtre; une nouvelle fenêtre commence aujourd'hui
      quand la précédente a plus de 30 jours.
    """
    if tier.credit_period == "calendar_month":
        return f"{today.year:04d}-{today.month:02d}"
    if existing is not None:
        try:
            window_start = dt.date.fromisoformat(existing.period_key)
        except ValueError:
            window_start = None
        if window_start and (today - window_start).days < ROLLING_WINDOW_DAYS:
            return existing.period_key
    return today.isoformat()


class EntitlementGate:
    """Contrôle d'accès aux générations et comptabilité des crédits."""

    def __init__(
        self,
        credit_repo,
        tiers: dict[TierName, SubscriptionTier] | None = None,
        clock: Callable[[], dt.datetime] = lambda: dt.datetime.now(dt.UTC),
        cas_max_attempts: int = 5,
    ) -> None:
        self.credits = credit_repo
        self._tiers = tiers or build_tiers()
        self._clock = clock
        self.cas_max_attempts = max(1, cas_max_attempts)
        self._log = structlog.get_logger(__name__).bind(component="entitlements")

    def tier(self, caller: Caller) -> SubscriptionTier:
        return self._tiers[caller.tier]

    def tiers(self) -> list[SubscriptionTier]:
        return list(self._tiers.values())

    def check(self, caller: Caller, timeframe_months: int) -> SubscriptionTier:
        """
        Vérifie la durée demandée pour le tier de l'appelant (sans effet de bord).

        Raises:
            TimeframeNotAllowedError: durée hors {1, 3, 6, 12} ou au-delà du maximum du tier.
        """
        tier = self.tier(caller)
        if timeframe_months not in ALLOWED_TIMEFRAMES:
            raise TimeframeNotAllowedError(
                "unsupported timeframe",
                details={"timeframe_months": timeframe_months, "allowed": list(ALLOWED_TIMEFRAMES)},
            )
        if timeframe_months > tier.max_timeframe_months:
            raise TimeframeNotAllowedError(
                "timeframe exceeds tier maximum",
                details={
                    "timeframe_months": timeframe_months,
                    "tier": tier.name,
                    "max_timeframe_months": tier.max_timeframe_months,
                },
            )
        return tier

    def balance(self, caller: Caller) -> CreditBalance:
        """Solde courant, remis à l'allocation du tier si la période a changé (lecture seule)."""
        tier = self.tier(caller)
        stored, _ = self.credits.get(caller.id)
        return self._effective(caller.id, tier, stored)

    def debit(self, caller: Caller) -> CreditBalance:
        """
        Consomme un crédit (CAS sur la version du solde).

        Returns:
            CreditBalance: solde après débit (sa `period_key` sert à `restore`).

        Raises:
            InsufficientCreditsError: solde nul sur la période courante.
            ConcurrentModificationError: conflit persistant après `cas_max_attempts` essais.
        """
        tier = self.tier(caller)
        for _ in range(self.cas_max_attempts):
            stored, version = self.credits.get(caller.id)
            current = self._effective(caller.id, tier, stored)
            if current.remaining <= 0:
                raise InsufficientCreditsError(
                    "no credits left for the current period",
                    details={"tier": tier.name, "period": current.period_key},
                )
            updated = current.model_copy(update={"remaining": current.remaining - 1})
            if self.credits.compare_and_set(updated, version):
                CREDITS_DEBITED_TOTAL.labels(tier=tier.name).inc()
                return updated
            CAS_CONFLICTS_TOTAL.labels(resource="credits").inc()
        self._log.warning("credit_debit_conflict", owner_kind=caller.kind)
        raise ConcurrentModificationError(
            "credit balance changed concurrently", details={"resource": "credits"}
        )

    def restore(self, caller: Caller, period_key: str | None = None) -> CreditBalance | None:
        """
        Restitue un crédit après un échec de génération.

        Jamais au-delà de l'allocation de la période; sans effet si la période a changé depuis
        le débit (`period_key`). Retourne le solde écrit, ou None si rien n'a été modifié.
        """
        tier = self.tier(caller)
        for _ in range(self.cas_max_attempts):
            stored, version = self.credits.get(caller.id)
            current = self._effective(caller.id, tier, stored)
            if stored is None or current.period_key != stored.period_key:
                return None
            if period_key is not None and period_key != current.period_key:
                return None
            if current.remaining >= tier.monthly_credits:
                return None
            updated = current.model_copy(update={"remaining": current.remaining + 1})
            if self.credits.compare_and_set(updated, version):
                CREDITS_RESTORED_TOTAL.labels(tier=tier.name).inc()
                return updated
            CAS_CONFLICTS_TOTAL.labels(resource="credits").inc()
        raise ConcurrentModificationError(
            "credit balance changed concurrently", details={"resource": "credits"}
        )

    def _effective(
        self, owner_id: str, tier: SubscriptionTier, stored: CreditBalance | None
    ) -> CreditBalance:
        today = self._clock().date()
        period = current_period_key(tier, today, stored)
        if stored is not None and stored.period_key == period:
            return stored
        return CreditBalance(owner_id=owner_id, remaining=tier.monthly_credits, period_key=period)
