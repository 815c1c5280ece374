"""Tests de la rédaction des actions/affirmations et du client OpenAI."""

import datetime as dt
import json
from types import SimpleNamespace
from unittest.mock import Mock

import httpx
import openai
import pytest

from tests.fakes import FakeLLM
from transit_timeline.domain.entities import AspectType, PlanetId, TransitEvent
from transit_timeline.infra.llm.openai_client import LLMRequestError, OpenAILLM
from transit_timeline.infra.retry import TransientError
from transit_timeline.infra.synthesizer import (
    ActionPrompt,
    LLMActionSynthesizer,
    MalformedOutputError,
    TemplateActionSynthesizer,
)


@pytest.fixture
def prompt() -> ActionPrompt:
    return ActionPrompt(
        goal="learn the cello",
        context="",
        approach="conservative",
        date=dt.date(2024, 4, 2),
        transit=TransitEvent(
            date=dt.date(2024, 4, 2),
            transiting_planet=PlanetId.VENUS,
            natal_planet=PlanetId.MOON,
            aspect=AspectType.TRINE,
            exactness_degrees=0.4,
        ),
    )


def test_llm_action_parses_json(prompt):
    payload = {
        "action_text": "Book a first lesson",
        "strategy_text": "Call two teachers.",
        "resource_links": [{"title": "Guide", "url": "https://example.org/cello"}],
    }
    llm = FakeLLM(json.dumps(payload))

    draft = LLMActionSynthesizer(llm).synthesize_action(prompt)

    assert draft.action_text == "Book a first lesson"
    assert draft.resource_links[0].url == "https://example.org/cello"
    user_message = llm.calls[0][1]["content"]
    assert "Transiting Venus trine natal Moon" in user_message
    assert "2024-04-02" in user_message


def test_llm_action_strips_code_fences(prompt):
    llm = FakeLLM('```json\n{"action_text": "Practice scales"}\n```')
    assert LLMActionSynthesizer(llm).synthesize_action(prompt).action_text == "Practice scales"


@pytest.mark.parametrize("raw", ["not json", '{"strategy_text": "x"}', '{"action_text": ""}'])
def test_llm_action_malformed_output_is_transient(prompt, raw):
    with pytest.raises(MalformedOutputError) as exc:
        LLMActionSynthesizer(FakeLLM(raw)).synthesize_action(prompt)
    assert isinstance(exc.value, TransientError)


def test_llm_affirmations():
    llm = FakeLLM('["I practice daily", "  ", "I enjoy every note"]')
    items = LLMActionSynthesizer(llm).synthesize_affirmations("learn the cello", "", 2)
    assert items == ["I practice daily", "I enjoy every note"]


@pytest.mark.parametrize("raw", ["[]", '{"a": 1}', "nope"])
def test_llm_affirmations_malformed(raw):
    with pytest.raises(MalformedOutputError):
        LLMActionSynthesizer(FakeLLM(raw)).synthesize_affirmations("goal", "", 5)


def test_template_synthesizer_is_deterministic(prompt):
    synth = TemplateActionSynthesizer()
    first = synth.synthesize_action(prompt)

    assert first == synth.synthesize_action(prompt)
    assert first.action_text == "Connect with people who can help toward: learn the cello"
    assert "low-risk" in first.strategy_text
    assert len(synth.synthesize_affirmations("learn the cello", "", 7)) == 7


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_openai_llm_returns_first_choice():
    client = Mock()
    client.chat.completions.create.return_value = _completion("hello")
    llm = OpenAILLM(api_key="sk-test", model="gpt-4o-mini", client=client)

    assert llm.generate([{"role": "user", "content": "hi"}], temperature=0.2) == "hello"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["temperature"] == 0.2


def test_openai_connection_error_is_transient():
    client = Mock()
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    client.chat.completions.create.side_effect = openai.APIConnectionError(request=request)

    with pytest.raises(TransientError):
        OpenAILLM(api_key="sk-test", client=client).generate([])


def test_openai_rejected_request_is_fatal():
    client = Mock()
    client.chat.completions.create.side_effect = openai.OpenAIError("invalid api key")

    with pytest.raises(LLMRequestError):
        OpenAILLM(api_key="sk-test", client=client).generate([])


def test_openai_empty_completion_is_transient():
    client = Mock()
    client.chat.completions.create.return_value = _completion("")

    with pytest.raises(TransientError):
        OpenAILLM(api_key="sk-test", client=client).generate([])
