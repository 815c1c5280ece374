"""Définition et chargement des paramètres de configuration applicative.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
"""

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from transit_timeline.domain.entities import AspectType


def resolve_env_file() -> Path:
    """Fichier .env retenu: ENV_FILE, sinon .env.{APP_ENV} s'il existe, sinon .env."""
    explicit = os.getenv("ENV_FILE")
    if explicit:
        return Path(explicit)
    cwd = Path.cwd()
    specific = cwd / f".env.{os.getenv('APP_ENV', 'dev')}"
    return specific if specific.exists() else cwd / ".env"


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=resolve_env_file(),
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )
    APP_NAME: str = "transit-timeline"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True

    REDIS_URL: str | None = None
    REQUIRE_REDIS: bool = False
    # JWT/Auth
    JWT_SECRET: str = "dev-secret-change-me"
    JWT_ALG: str = "HS256"
    JWT_EXPIRES_MIN: int = 60

    # Génération de texte
    OPENAI_API_KEY: str | None = None
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_S: float = 30.0

    # Éphémérides
    EPHEMERIS_BACKEND: Literal["swisseph", "linear"] = "swisseph"
    EPHEMERIS_PATH: str | None = None
    EPHEMERIS_CACHE_TTL_S: float = 86400.0
    EPHEMERIS_CACHE_MAX_ENTRIES: int = 100_000

    # Retries des appels externes
    EXTERNAL_MAX_ATTEMPTS: int = 3
    EXTERNAL_BASE_DELAY_S: float = 0.2
    EXTERNAL_MAX_DELAY_S: float = 2.0
    # Stockage Redis (lectures et écritures idempotentes)
    STORE_MAX_ATTEMPTS: int = 3
    STORE_BASE_DELAY_S: float = 0.05
    STORE_MAX_DELAY_S: float = 0.5
    # Compare-and-set sur crédits / points
    CAS_MAX_ATTEMPTS: int = 5

    # Tiers
    ANONYMOUS_CREDITS: int = 1
    FREE_MONTHLY_CREDITS: int = 3
    PREMIUM_MONTHLY_CREDITS: int = 30

    # Pénalités d'aspect du classement, ex. {"square": 1.5}
    ASPECT_WEIGHTS_JSON: str = "{}"

    @field_validator("ASPECT_WEIGHTS_JSON")
    @classmethod
    def _check_weights(cls, v: str) -> str:
        data = json.loads(v or "{}")
        if not isinstance(data, dict) or not all(
            isinstance(w, int | float) and not isinstance(w, bool) for w in data.values()
        ):
            raise ValueError("ASPECT_WEIGHTS_JSON must be a JSON object of numbers")
        unknown = sorted(set(data) - {a.value for a in AspectType})
        if unknown:
            raise ValueError(f"ASPECT_WEIGHTS_JSON has unknown aspects: {', '.join(unknown)}")
        return v or "{}"

    @property
    def aspect_weights(self) -> dict[str, float]:
        return {k: float(w) for k, w in json.loads(self.ASPECT_WEIGHTS_JSON).items()}


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
