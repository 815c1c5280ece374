"""
Synthèse du texte des actions et des affirmations.

- `LLMActionSynthesizer`: prompts JSON vers un `LLM`; une sortie illisible est traitée comme un
  échec transitoire (rejouable par la politique de retry de l'appelant).
- `TemplateActionSynthesizer`: rédaction déterministe hors-ligne (dev/tests, sans clé API).
"""

from __future__ import annotations

import datetime as dt
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from transit_timeline.domain.entities import PlanetId, ResourceLink, TransitEvent
from transit_timeline.infra.llm.base import LLM
from transit_timeline.infra.retry import TransientError

_FENCE_RE = re.compile(r"```(?:json)?\s*|```")


class MalformedOutputError(TransientError):
    """Réponse du modèle non conforme au format JSON attendu."""


@dataclass(frozen=True)
class ActionPrompt:
    """Contexte d'une action à rédiger."""

    goal: str
    context: str
    approach: str
    date: dt.date
    transit: TransitEvent

    @property
    def transit_summary(self) -> str:
        return self.transit.summary


class ActionDraft(BaseModel):
    """Texte d'une action produit par le service de génération."""

    action_text: str = Field(..., min_length=1)
    strategy_text: str | None = None
    resource_links: list[ResourceLink] = Field(default_factory=list)


_affirmations_adapter = TypeAdapter(list[str])


class ActionSynthesizer(ABC):
    """Interface du service de génération de texte."""

    @abstractmethod
    def synthesize_action(self, prompt: ActionPrompt) -> ActionDraft: ...

    @abstractmethod
    def synthesize_affirmations(self, goal: str, context: str, count: int) -> list[str]: ...


def _strip_fences(raw: str) -> str:
    return _FENCE_RE.sub("", raw).strip()


class LLMActionSynthesizer(ActionSynthesizer):
    """Rédaction via un LLM avec sortie JSON stricte."""

    ACTION_SYSTEM = (
        "You are a strategic life coach who aligns concrete actions with astrological "
        "transits. Output ONLY a JSON object with keys action_text, strategy_text and "
        "resource_links (list of {title, url}). No markdown."
    )
    AFFIRMATION_SYSTEM = (
        "You are a personal development coach. You write short, empowering affirmations "
        "without astrological vocabulary. Output ONLY a JSON array of strings."
    )

    def __init__(self, llm: LLM, temperature: float = 0.7) -> None:
        self.llm = llm
        self.temperature = temperature

    def synthesize_action(self, prompt: ActionPrompt) -> ActionDraft:
        user = (
            f'GOAL: "{prompt.goal}"\n'
            f'CONTEXT: "{prompt.context}"\n'
            f"APPROACH: {prompt.approach}\n"
            f"DATE: {prompt.date.isoformat()}\n"
            f"TRANSIT: {prompt.transit_summary}\n"
            "Write one specific, doable action for that date that uses the transit energy, "
            "with a 2-3 paragraph strategy explaining how to complete it."
        )
        raw = self.llm.generate(
            [
                {"role": "system", "content": self.ACTION_SYSTEM},
                {"role": "user", "content": user},
            ],
            temperature=self.temperature,
        )
        try:
            return ActionDraft.model_validate_json(_strip_fences(raw))
        except ValidationError as e:
            raise MalformedOutputError("action output is not valid JSON") from e

    def synthesize_affirmations(self, goal: str, context: str, count: int) -> list[str]:
        user = (
            f'Generate {count} daily affirmations to achieve: "{goal}"\n'
            f"Context: {context}\n"
            "Each one 1-2 sentences, empowering, action-oriented and unique."
        )
        raw = self.llm.generate(
            [
                {"role": "system", "content": self.AFFIRMATION_SYSTEM},
                {"role": "user", "content": user},
            ],
            temperature=self.temperature,
        )
        try:
            items = _affirmations_adapter.validate_json(_strip_fences(raw))
        except ValidationError as e:
            raise MalformedOutputError("affirmations output is not a JSON array") from e
        items = [a.strip() for a in items if a.strip()]
        if not items:
            raise MalformedOutputError("affirmations output is empty")
        return items


# Registre d'énergie des planètes en transit
PLANET_VERBS: dict[PlanetId, str] = {
    PlanetId.SUN: "Take center stage and lead",
    PlanetId.MOON: "Check in with yourself and reflect",
    PlanetId.MERCURY: "Communicate and write down your plan",
    PlanetId.VENUS: "Connect with people who can help",
    PlanetId.MARS: "Act decisively and push forward",
    PlanetId.JUPITER: "Expand your reach and take a calculated risk",
    PlanetId.SATURN: "Commit to a structure and plan the next steps",
    PlanetId.URANUS: "Try a new approach",
    PlanetId.NEPTUNE: "Envision the outcome and trust your intuition",
    PlanetId.PLUTO: "Let go of what no longer serves the goal",
}

_APPROACH_HINTS = {
    "conservative": "Keep the step small, steady and low-risk.",
    "aggressive": "Go for the bold, high-impact version of this step.",
}


class TemplateActionSynthesizer(ActionSynthesizer):
    """Rédaction déterministe sans service externe."""

    def synthesize_action(self, prompt: ActionPrompt) -> ActionDraft:
        verb = PLANET_VERBS[prompt.transit.transiting_planet]
        hint = _APPROACH_HINTS.get(
            prompt.approach, "Balance steady progress with one calculated risk."
        )
        return ActionDraft(
            action_text=f"{verb} toward: {prompt.goal}",
            strategy_text=(
                f"On {prompt.date.isoformat()}, {prompt.transit_summary.lower()} supports this "
                f"step. {hint}"
            ),
        )

    def synthesize_affirmations(self, goal: str, context: str, count: int) -> list[str]:
        base = [
            f"I am confident and capable of achieving {goal}",
            f"Every day I take powerful steps toward {goal}",
            "My intentions are clear and my actions are powerful",
        ]
        return [base[i % len(base)] for i in range(max(1, count))]

