"""Dépendances partagées pour les routes de l'API.

But du module
-------------
- Exposer le conteneur attaché à l'application (`app.state.container`).
- Identifier l'appelant: token Bearer (utilisateur avec tier) ou en-tête `X-Anonymous-Id`.
"""

import hashlib

from fastapi import Depends, Header, Request

from transit_timeline.apigw.errors import unauthorized
from transit_timeline.core.container import Container
from transit_timeline.domain.auth import decode_token
from transit_timeline.domain.entities import Caller


def get_container(request: Request) -> Container:
    return request.app.state.container


def _bearer_caller(authorization: str | None, container: Container) -> Caller | None:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        raise unauthorized("invalid_authorization_header")
    data = decode_token(
        authorization.split(" ", 1)[1],
        container.settings.JWT_SECRET,
        container.settings.JWT_ALG,
    )
    if data is None:
        raise unauthorized("invalid_token")
    return Caller(kind="user", id=data.sub, tier=data.tier)


def get_caller(
    authorization: str | None = Header(None),
    x_anonymous_id: str | None = Header(None),
    container: Container = Depends(get_container),
) -> Caller:
    """Utilisateur authentifié si un token est fourni, sinon appelant anonyme."""
    caller = _bearer_caller(authorization, container)
    if caller is not None:
        return caller
    if x_anonymous_id and x_anonymous_id.strip():
        # Empreinte opaque: l'identifiant brut du client n'est jamais stocké
        digest = hashlib.sha256(x_anonymous_id.strip().encode()).hexdigest()[:32]
        return Caller(kind="anonymous", id=f"anon:{digest}", tier="anonymous")
    raise unauthorized("missing_credentials")


def get_user(
    authorization: str | None = Header(None),
    container: Container = Depends(get_container),
) -> Caller:
    """Utilisateur authentifié obligatoire (points, profil natal)."""
    caller = _bearer_caller(authorization, container)
    if caller is None:
        raise unauthorized("missing_token")
    return caller
