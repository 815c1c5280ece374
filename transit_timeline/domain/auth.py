"""
Module d'authentification par token.

Ce module fournit la création et la validation des tokens JWT portant l'identité de l'utilisateur
et son tier d'abonnement.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt import InvalidTokenError
from pydantic import BaseModel, ValidationError

from transit_timeline.domain.entities import TierName


class TokenData(BaseModel):
    """Données contenues dans un token JWT."""

    sub: str
    tier: TierName = "free"


def create_access_token(
    secret: str, alg: str, expires_min: int, payload: dict[str, Any]
) -> str:
    """Crée un token JWT d'accès avec expiration."""
    to_encode = payload.copy()
    expire = datetime.now(UTC) + timedelta(minutes=expires_min)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret, algorithm=alg)


def decode_token(token: str, secret: str, alg: str) -> TokenData | None:
    """Décode et valide un token JWT (None si invalide, expiré ou mal formé)."""
    try:
        data = jwt.decode(token, secret, algorithms=[alg])
        return TokenData(**data)
    except (InvalidTokenError, ValidationError):
        return None
