"""
Barème de points et table des niveaux.

Points par type d'événement:
  affirmation_confirmed       → +5
  action_completed            → +10
  timeline_finished           → +50
  daily_login                 → +5
  streak_7 / streak_30        → +25 / +100
  referral / social_share     → +50 / +10
  feedback                    → +15
  first_generation            → +25
  milestone_10/50/100_actions → +30 / +100 / +250

Le niveau courant est toujours le plus haut niveau dont le seuil est atteint par les points
cumulés (`lifetime_points`).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

POINTS_RULES: dict[str, int] = {
    "affirmation_confirmed": 5,
    "action_completed": 10,
    "timeline_finished": 50,
    "daily_login": 5,
    "streak_7": 25,
    "streak_30": 100,
    "referral": 50,
    "social_share": 10,
    "feedback": 15,
    "first_generation": 25,
    "milestone_10_actions": 30,
    "milestone_50_actions": 100,
    "milestone_100_actions": 250,
}

STREAK_THRESHOLDS = (7, 30)
ACTION_MILESTONES: dict[int, str] = {
    10: "milestone_10_actions",
    50: "milestone_50_actions",
    100: "milestone_100_actions",
}


@dataclass(frozen=True)
class AchievementLevel:
    """Palier de la table des niveaux."""

    level: int
    name: str
    points_threshold: int


ACHIEVEMENT_LEVELS: tuple[AchievementLevel, ...] = (
    AchievementLevel(1, "Initiate of the Compass", 0),
    AchievementLevel(2, "Orbital Apprentice", 25),
    AchievementLevel(3, "Bearer of Intent", 75),
    AchievementLevel(4, "Awakened Navigator", 200),
    AchievementLevel(5, "Celestial Adept", 500),
    AchievementLevel(6, "Stellar Alchemist", 1200),
    AchievementLevel(7, "Master of Arrival", 2500),
    AchievementLevel(8, "Sage of the Void", 5000),
    AchievementLevel(9, "Solar Oracle", 10000),
    AchievementLevel(10, "Quantum Starseed", 20000),
    AchievementLevel(11, "Cosmic Admiral", 40000),
    AchievementLevel(12, "Eternal Sovereign", 75000),
)


def level_for_points(lifetime_points: int) -> AchievementLevel:
    """Retourne le plus haut palier dont le seuil est ≤ `lifetime_points`."""
    for lvl in reversed(ACHIEVEMENT_LEVELS):
        if lifetime_points >= lvl.points_threshold:
            return lvl
    return ACHIEVEMENT_LEVELS[0]


def level_by_number(level: int) -> AchievementLevel:
    """Retourne le palier `level` (1..12)."""
    return ACHIEVEMENT_LEVELS[level - 1]


def level_progress(lifetime_points: int) -> dict[str, Any]:
    """
    Calcule la progression vers le palier suivant.

    Returns:
        dict avec `level`, `level_name`, `points_for_next_level` (None au niveau max),
        `points_needed`, `progress_percent` (arrondi à 2 décimales, plafonné à 100) et
        `is_max_level`.
    """
    current = level_for_points(lifetime_points)
    nxt = ACHIEVEMENT_LEVELS[current.level] if current.level < len(ACHIEVEMENT_LEVELS) else None
    if nxt is None:
        percent = 100.0
    else:
        span = nxt.points_threshold - current.points_threshold
        percent = min(100.0, (lifetime_points - current.points_threshold) / span * 100)
    return {
        "level": current.level,
        "level_name": current.name,
        "points_for_next_level": nxt.points_threshold if nxt else None,
        "points_needed": nxt.points_threshold - lifetime_points if nxt else 0,
        "progress_percent": round(percent, 2),
        "is_max_level": nxt is None,
    }
