"""
Client LLM basé sur l'API OpenAI.

Implémente l'interface LLM via chat.completions (SDK OpenAI) et classe les erreurs du SDK:
- indisponibilité, timeout, quota ou erreur serveur → `TransientError` (rejouable);
- requête refusée (authentification, paramètres) → `LLMRequestError` (fatale).
"""

from __future__ import annotations

import logging
from typing import Any

import openai
from openai import OpenAI

from transit_timeline.infra.llm.base import LLM
from transit_timeline.infra.retry import TransientError

log = logging.getLogger(__name__)


class LLMRequestError(Exception):
    """Requête refusée par le fournisseur: inutile de la rejouer."""


class OpenAILLM(LLM):
    """LLM basé sur OpenAI (chat.completions)."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout_s: float = 30.0,
        client: Any | None = None,
    ) -> None:
        """Initialise le client OpenAI (ou utilise `client`, injecté en test)."""
        self.model = model
        # Les retries sont gérés par la politique de l'appelant, pas par le SDK
        self.client = client or OpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)

    def generate(self, messages: list[dict[str, str]], **kwargs: Any) -> str:
        """Génère le texte de la première réponse du modèle."""
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                **kwargs,
            )
        except (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as e:
            raise TransientError(f"openai unavailable: {type(e).__name__}") from e
        except openai.OpenAIError as e:
            log.warning("openai_request_rejected error=%s", type(e).__name__)
            raise LLMRequestError(str(e)) from e

        choice = resp.choices[0]
        content = getattr(getattr(choice, "message", None), "content", None)
        if not content:
            raise TransientError("openai returned an empty completion")
        return str(content)
