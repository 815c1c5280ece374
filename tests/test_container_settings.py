"""Tests de la configuration et du choix des backends par le conteneur."""

from unittest.mock import Mock, patch

import pytest
import redis
from pydantic import ValidationError

from transit_timeline.core.container import Container
from transit_timeline.core.settings import Settings, resolve_env_file
from transit_timeline.domain.entities import AspectType
from transit_timeline.infra.ledger import RedisCreditRepo
from transit_timeline.infra.synthesizer import LLMActionSynthesizer, TemplateActionSynthesizer


def _settings(**overrides) -> Settings:
    base = {
        "REDIS_URL": None,
        "OPENAI_API_KEY": None,
        "EPHEMERIS_BACKEND": "linear",
        "EXTERNAL_BASE_DELAY_S": 0.0,
    }
    return Settings(_env_file=None, **{**base, **overrides})


def test_env_file_resolution(monkeypatch, tmp_path):
    monkeypatch.setenv("ENV_FILE", str(tmp_path / "custom.env"))
    assert resolve_env_file() == tmp_path / "custom.env"

    monkeypatch.delenv("ENV_FILE")
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.chdir(tmp_path)
    assert resolve_env_file() == tmp_path / ".env"
    (tmp_path / ".env.test").write_text("APP_NAME=x\n")
    assert resolve_env_file() == tmp_path / ".env.test"


def test_aspect_weights_parsing():
    settings = _settings(ASPECT_WEIGHTS_JSON='{"square": 1.5}')
    assert settings.aspect_weights == {"square": 1.5}


def test_invalid_aspect_weights_rejected():
    with pytest.raises(ValidationError):
        _settings(ASPECT_WEIGHTS_JSON='{"square": "high"}')


def test_unknown_aspect_weight_rejected():
    with pytest.raises(ValidationError, match="opposition"):
        _settings(ASPECT_WEIGHTS_JSON='{"opposition": 1}')


def test_memory_backend_without_redis_url():
    container = Container(settings=_settings())
    assert container.storage_backend == "memory"
    assert isinstance(container.synthesizer, TemplateActionSynthesizer)


def test_require_redis_without_url_fails():
    with pytest.raises(RuntimeError):
        Container(settings=_settings(REQUIRE_REDIS=True))


@patch("redis.Redis.from_url")
def test_unreachable_redis_falls_back_to_memory(mock_from_url):
    client = Mock()
    client.ping.side_effect = redis.ConnectionError("refused")
    mock_from_url.return_value = client

    container = Container(settings=_settings(REDIS_URL="redis://localhost:6399/0"))

    assert container.storage_backend == "memory-fallback"


@patch("redis.Redis.from_url")
def test_unreachable_redis_is_fatal_when_required(mock_from_url):
    client = Mock()
    client.ping.side_effect = redis.ConnectionError("refused")
    mock_from_url.return_value = client

    with pytest.raises(RuntimeError):
        Container(settings=_settings(REDIS_URL="redis://localhost:6399/0", REQUIRE_REDIS=True))


@patch("redis.Redis.from_url")
def test_reachable_redis_is_used(mock_from_url):
    mock_from_url.return_value = Mock()

    container = Container(settings=_settings(REDIS_URL="redis://localhost:6379/0"))

    assert container.storage_backend == "redis"
    assert isinstance(container.credit_repo, RedisCreditRepo)


def test_openai_key_enables_llm_synthesizer():
    container = Container(settings=_settings(OPENAI_API_KEY="sk-test"))
    assert isinstance(container.synthesizer, LLMActionSynthesizer)


def test_configured_weights_reach_ranker():
    container = Container(settings=_settings(ASPECT_WEIGHTS_JSON='{"square": 3.0}'))
    assert container.timelines.ranker.weights[AspectType.SQUARE] == 3.0


@patch("redis.Redis.from_url")
def test_store_retry_settings_reach_redis_repos(mock_from_url):
    mock_from_url.return_value = Mock()

    container = Container(
        settings=_settings(REDIS_URL="redis://localhost:6379/0", STORE_MAX_ATTEMPTS=5)
    )

    assert container.credit_repo.retry_policy.max_attempts == 5
    assert container.points_repo.retry_policy.max_attempts == 5


def test_configured_credits_reach_gate():
    container = Container(settings=_settings(FREE_MONTHLY_CREDITS=7))
    assert {t.name: t.monthly_credits for t in container.gate.tiers()}["free"] == 7
