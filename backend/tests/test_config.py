"""
Tests for configuration, startup validation and token handling.
"""

from datetime import timedelta

import pytest

from brandforge.core.config import settings
from brandforge.core.env_validation import (
    validate_database_url,
    validate_environment,
    validate_job_settings,
    validate_rag_settings,
    validate_secret_key,
)
from brandforge.core.security import create_access_token, decode_access_token


class TestSecretKeys:

    def test_missing(self):
        assert validate_secret_key("SECRET_KEY", None) == ["SECRET_KEY is not set"]

    def test_too_short_and_placeholder(self):
        errors = validate_secret_key("SECRET_KEY", "change-me")
        assert len(errors) == 2

    def test_jwt_key_must_differ(self):
        errors = validate_secret_key("JWT_SECRET_KEY", settings.SECRET_KEY)
        assert any("different" in e for e in errors)


class TestRagSettings:

    def test_test_environment_is_valid(self):
        assert validate_environment() == (True, [])

    def test_zero_weights(self, monkeypatch):
        monkeypatch.setattr(settings, "RAG_WEIGHT_SIMILARITY", 0.0)
        monkeypatch.setattr(settings, "RAG_WEIGHT_RECENCY", 0.0)
        monkeypatch.setattr(settings, "RAG_WEIGHT_PERFORMANCE", 0.0)
        assert "RAG ranking weights must not all be zero" in validate_rag_settings()

    def test_unnormalized_weights_only_warn(self, monkeypatch):
        monkeypatch.setattr(settings, "RAG_WEIGHT_SIMILARITY", 2.0)
        assert validate_rag_settings() == []

    def test_pool_smaller_than_top_k(self, monkeypatch):
        monkeypatch.setattr(settings, "RAG_CANDIDATE_POOL_SIZE", 2)
        monkeypatch.setattr(settings, "RAG_TOP_K", 5)
        assert "RAG_CANDIDATE_POOL_SIZE must be >= RAG_TOP_K" in validate_rag_settings()

    def test_unknown_boost_type(self, monkeypatch):
        monkeypatch.setattr(settings, "RAG_CONTENT_TYPE_BOOSTS", {"podcast": 1.0})
        assert "RAG_CONTENT_TYPE_BOOSTS has unknown content types: podcast" in validate_rag_settings()

    def test_postgres_required_outside_staging(self, monkeypatch):
        monkeypatch.setattr(settings, "APP_ENV", "development")
        assert validate_database_url() != []


class TestJobSettings:

    def test_defaults_are_valid(self):
        assert validate_job_settings() == []

    def test_slow_reconciler_only_warns(self, monkeypatch):
        monkeypatch.setattr(settings, "VECTORIZATION_RECONCILE_INTERVAL_MINUTES", 60)
        assert validate_job_settings() == []

    def test_invalid_values(self, monkeypatch):
        monkeypatch.setattr(settings, "VECTORIZATION_STALE_JOB_SECONDS", 0)
        monkeypatch.setattr(settings, "VECTORIZATION_CAS_RETRIES", 0)
        assert len(validate_job_settings()) == 2

class TestTokens:

    def test_round_trip(self):
        token = create_access_token({"sub": "maker@example.com"}, expires_delta=timedelta(minutes=5))
        payload = decode_access_token(token)
        assert payload["sub"] == "maker@example.com"
        assert "exp" in payload

    def test_expired_token(self):
        token = create_access_token({"sub": "maker@example.com"}, expires_delta=timedelta(minutes=-1))
        assert decode_access_token(token) is None

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_invalid_tokens(self, token):
        assert decode_access_token(token) is None
