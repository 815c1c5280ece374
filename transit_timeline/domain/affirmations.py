"""Affirmations quotidiennes: pool de secours, rotation et affirmation du jour."""

from __future__ import annotations

import datetime as dt
from collections.abc import Sequence

MAX_STORED_AFFIRMATIONS = 30


def fallback_affirmations(outcome_goal: str) -> list[str]:
    """Pool intégré utilisé quand le service de génération échoue."""
    return [
        f"I am confident and capable of achieving my goal of {outcome_goal}",
        f"Every day I take powerful steps toward manifesting {outcome_goal}",
        "I trust the process and take inspired action",
        "My intentions are clear and my actions are powerful",
        "I am worthy of achieving my highest aspirations",
        "I attract success and opportunities that align with my vision",
        "I am aligned with my purpose and ready to succeed",
        "I have the strength and determination to reach my goals",
        "I am grateful for the progress I make each day",
        "I believe in my ability to create the life I desire",
    ]


def stored_count(total_days: int) -> int:
    return max(1, min(total_days, MAX_STORED_AFFIRMATIONS))


def rotate(pool: Sequence[str], count: int) -> list[str]:
    """Répète `pool` dans l'ordre jusqu'à `count` éléments (entrées vides ignorées)."""
    cleaned = [a.strip() for a in pool if a and a.strip()]
    if not cleaned:
        raise ValueError("affirmation pool is empty")
    return [cleaned[i % len(cleaned)] for i in range(count)]


def today_index(start_date: dt.date, today: dt.date, length: int) -> int:
    """Index de l'affirmation du jour: jours écoulés depuis le début, modulo la longueur.

    Avant le début de la timeline, on reste sur la première affirmation.
    """
    if length <= 0:
        raise ValueError("no affirmations")
    elapsed = max(0, (today - start_date).days)
    return elapsed % length
