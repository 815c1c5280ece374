"""
Classement des dates favorables et répartition sur la période.

Objectif: à partir des `TransitEvent` d'une plage de dates, noter chaque jour par son meilleur
événement (écart à l'exactitude + pénalité d'aspect), puis retenir gloutonnement les meilleurs
jours en imposant un espacement minimal pour éviter les grappes.
"""

from __future__ import annotations

import datetime as dt
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from transit_timeline.domain.entities import ASPECT_PREFERENCE, AspectType, TransitEvent

# Pénalités ordinales (configurables, non contractuelles): conjonction > trigone > sextile > carré
DEFAULT_ASPECT_WEIGHTS: dict[AspectType, float] = {
    AspectType.CONJUNCTION: 0.0,
    AspectType.TRINE: 0.25,
    AspectType.SEXTILE: 0.5,
    AspectType.SQUARE: 1.0,
}
_ASPECT_RANK = {a: i for i, a in enumerate(ASPECT_PREFERENCE)}


@dataclass(frozen=True)
class RankedDate:
    """Jour retenu avec son meilleur transit."""

    date: dt.date
    event: TransitEvent
    score: float

    @property
    def summary(self) -> str:
        return self.event.summary


def target_action_count(timeframe_months: int, tier_max_actions: int) -> int:
    """Nombre d'actions visé: entre 8 et 15 (3 par mois), plafonné par le tier."""
    return min(tier_max_actions, min(15, max(8, math.floor(timeframe_months * 3))))


def spacing_days(total_days: int, target: int) -> int:
    """Fenêtre d'exclusion autour d'un jour retenu."""
    if target <= 0:
        return 1
    return max(1, math.floor(total_days / (target * 1.5)))


class FavorabilityRanker:
    """Note les jours et sélectionne un sous-ensemble bien réparti."""

    def __init__(self, weights: Mapping[AspectType, float] | None = None) -> None:
        self.weights = {**DEFAULT_ASPECT_WEIGHTS, **(weights or {})}

    def score_event(self, event: TransitEvent) -> float:
        """Distance pondérée: plus bas = plus favorable."""
        return event.exactness_degrees + self.weights[event.aspect]

    def best_per_day(self, events: Iterable[TransitEvent]) -> dict[dt.date, RankedDate]:
        """Meilleur événement de chaque jour (égalités: aspect préféré)."""
        best: dict[dt.date, RankedDate] = {}
        for event in events:
            score = self.score_event(event)
            current = best.get(event.date)
            if current is None or (score, _ASPECT_RANK[event.aspect]) < (
                current.score,
                _ASPECT_RANK[current.event.aspect],
            ):
                best[event.date] = RankedDate(event.date, event, score)
        return best

    def select(
        self,
        events: Iterable[TransitEvent],
        target: int,
        start: dt.date,
        end: dt.date,
    ) -> list[RankedDate]:
        """
        Retient au plus `target` jours, triés par date croissante.

        - Glouton sur le score, exclusion des jours à moins de `spacing` d'un jour retenu.
        - Si la cible n'est pas atteinte, une seconde passe complète avec l'espacement divisé
          par deux (minimum 1).
        - Si elle ne l'est toujours pas, on renvoie moins de jours (aucune date inventée).
        """
        if target <= 0:
            return []
        total_days = (end - start).days + 1
        candidates = [
            r for d, r in self.best_per_day(events).items() if start <= d <= end
        ]
        # Meilleur score d'abord, puis date la plus proche
        candidates.sort(key=lambda r: (r.score, r.date))

        spacing = spacing_days(total_days, target)
        chosen = self._greedy(candidates, target, spacing)
        if len(chosen) < target and spacing > 1:
            chosen = self._greedy(candidates, target, max(1, spacing // 2))
        return sorted(chosen, key=lambda r: r.date)

    @staticmethod
    def _greedy(candidates: list[RankedDate], target: int, spacing: int) -> list[RankedDate]:
        chosen: list[RankedDate] = []
        for cand in candidates:
            if len(chosen) >= target:
                break
            if all(abs((cand.date - c.date).days) >= spacing for c in chosen):
                chosen.append(cand)
        return chosen
