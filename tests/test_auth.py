"""Tests des tokens JWT et de l'identification de l'appelant."""

from datetime import UTC, datetime, timedelta

import jwt

from transit_timeline.domain.auth import create_access_token, decode_token

SECRET = "test-secret"


def test_token_roundtrip():
    token = create_access_token(SECRET, "HS256", 5, {"sub": "alice", "tier": "premium"})
    data = decode_token(token, SECRET, "HS256")
    assert data is not None
    assert data.sub == "alice"
    assert data.tier == "premium"


def test_tier_defaults_to_free():
    token = create_access_token(SECRET, "HS256", 5, {"sub": "bob"})
    assert decode_token(token, SECRET, "HS256").tier == "free"


def test_wrong_secret_rejected():
    token = create_access_token(SECRET, "HS256", 5, {"sub": "alice"})
    assert decode_token(token, "other-secret", "HS256") is None


def test_expired_token_rejected():
    expired = datetime.now(UTC) - timedelta(minutes=1)
    token = jwt.encode({"sub": "alice", "exp": expired}, SECRET, algorithm="HS256")
    assert decode_token(token, SECRET, "HS256") is None


def test_unknown_tier_rejected():
    token = create_access_token(SECRET, "HS256", 5, {"sub": "alice", "tier": "platinum"})
    assert decode_token(token, SECRET, "HS256") is None


def test_missing_subject_rejected():
    token = create_access_token(SECRET, "HS256", 5, {"tier": "free"})
    assert decode_token(token, SECRET, "HS256") is None
