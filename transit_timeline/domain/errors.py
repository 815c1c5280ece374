"""
Taxonomie des erreurs métier du moteur de timelines.

Chaque erreur porte un `code` stable et le statut HTTP associé, afin que la couche API puisse
produire l'enveloppe d'erreur standard sans connaître le détail des exceptions.
"""

from __future__ import annotations

from typing import Any

from transit_timeline.core.http_constants import (
    HTTP_BAD_GATEWAY,
    HTTP_CONFLICT,
    HTTP_FORBIDDEN,
    HTTP_INTERNAL_SERVER_ERROR,
    HTTP_NOT_FOUND,
    HTTP_PAYMENT_REQUIRED,
    HTTP_SERVICE_UNAVAILABLE,
    HTTP_UNPROCESSABLE,
)


class TimelineError(Exception):
    """Erreur de base du domaine (code stable + statut HTTP)."""

    code = "TIMELINE_ERROR"
    status_code = HTTP_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialise l'erreur avec un message lisible et des détails optionnels."""
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidBirthDataError(TimelineError):
    """Date, heure, fuseau ou coordonnées de naissance invalides."""

    code = "INVALID_BIRTH_DATA"
    status_code = HTTP_UNPROCESSABLE


class InsufficientCreditsError(TimelineError):
    """Plus aucun crédit disponible sur la période courante."""

    code = "INSUFFICIENT_CREDITS"
    status_code = HTTP_PAYMENT_REQUIRED


class TimeframeNotAllowedError(TimelineError):
    """Durée de timeline non supportée ou au-delà du maximum du tier."""

    code = "TIMEFRAME_NOT_ALLOWED"
    status_code = HTTP_FORBIDDEN


class EphemerisUnavailableError(TimelineError):
    """L'oracle d'éphémérides a échoué après épuisement des retries."""

    code = "EPHEMERIS_UNAVAILABLE"
    status_code = HTTP_SERVICE_UNAVAILABLE


class StoreUnavailableError(TimelineError):
    """Le stockage durable reste injoignable après épuisement des retries."""

    code = "STORE_UNAVAILABLE"
    status_code = HTTP_SERVICE_UNAVAILABLE


class ActionSynthesisFailedError(TimelineError):
    """Le service de génération de texte n'a pas produit d'action exploitable."""

    code = "ACTION_SYNTHESIS_FAILED"
    status_code = HTTP_BAD_GATEWAY


class ConcurrentModificationError(TimelineError):
    """Conflit CAS persistant sur un compteur partagé (crédits ou points)."""

    code = "CONCURRENT_MODIFICATION"
    status_code = HTTP_CONFLICT


class TimelineNotFoundError(TimelineError):
    """Timeline absente ou n'appartenant pas à l'appelant."""

    code = "TIMELINE_NOT_FOUND"
    status_code = HTTP_NOT_FOUND


class InvalidEventError(TimelineError):
    """Événement de points incohérent (index d'action hors bornes, etc.)."""

    code = "INVALID_EVENT"
    status_code = HTTP_UNPROCESSABLE


class DegenerateTimelineWarning(UserWarning):
    """Moins de dates favorables trouvées que d'actions demandées.

    Non fatal: la timeline est produite avec moins d'actions et l'avertissement est renvoyé à
    l'appelant pour qu'il prévienne l'utilisateur.
    """

    code = "DEGENERATE_TIMELINE"

    def __init__(self, requested: int, found: int) -> None:
        """Conserve le nombre d'actions demandées et obtenues."""
        super().__init__(f"only {found} favorable dates found for {requested} requested actions")
        self.requested = requested
        self.found = found

    def to_dict(self) -> dict[str, Any]:
        """Représentation sérialisable pour les réponses API."""
        return {
            "code": self.code,
            "message": str(self),
            "requested": self.requested,
            "found": self.found,
        }
