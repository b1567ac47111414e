"""
Configuration Tests
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from warden.config import Settings

ACCESS = "access-secret-for-config-tests-0123456789abcdef"
REFRESH = "refresh-secret-for-config-tests-0123456789abcdef"


def _settings(**overrides) -> Settings:
    values = {
        "jwt_access_secret_key": ACCESS,
        "jwt_refresh_secret_key": REFRESH,
        "store_backend": "memory",
    }
    values.update(overrides)
    return Settings(**values)


class TestSettings:

    def test_defaults(self):
        settings = _settings()

        assert settings.access_token_ttl == timedelta(days=7)
        assert settings.refresh_token_ttl == timedelta(days=30)
        assert settings.password_reset_ttl == timedelta(minutes=10)
        assert settings.email_verification_ttl == timedelta(hours=24)
        assert settings.login_max_attempts == 5
        assert settings.refresh_cookie_name == "refreshToken"

    def test_secrets_must_differ(self):
        with pytest.raises(ValidationError, match="must differ"):
            _settings(jwt_refresh_secret_key=ACCESS)

    @pytest.mark.parametrize("secret", ["too-short", "a" * 40])
    def test_weak_secret_rejected(self, secret):
        with pytest.raises(ValidationError):
            _settings(jwt_access_secret_key=secret)

    def test_disallowed_algorithm(self):
        with pytest.raises(ValidationError):
            _settings(jwt_algorithm="none")

    def test_neo4j_requires_password(self):
        with pytest.raises(ValidationError, match="neo4j_password"):
            _settings(store_backend="neo4j", neo4j_password=None)

    def test_http_email_requires_url(self):
        with pytest.raises(ValidationError, match="email_api_url"):
            _settings(email_backend="http", email_api_url=None)

    def test_http_image_store_requires_url(self):
        with pytest.raises(ValidationError, match="image_api_url"):
            _settings(image_backend="http", image_api_url=None)

    def test_cors_origins_list(self):
        settings = _settings(cors_origins="https://a.example.com, https://b.example.com,")
        assert settings.cors_origins_list == ["https://a.example.com", "https://b.example.com"]

    def test_wildcard_cors_rejected_in_production(self):
        settings = _settings(app_env="production", cors_origins="*")
        with pytest.raises(ValueError):
            settings.cors_origins_list

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("LOGIN_MAX_ATTEMPTS", "3")
        monkeypatch.setenv("PASSWORD_RESET_TTL_MINUTES", "30")

        settings = _settings()

        assert settings.login_max_attempts == 3
        assert settings.password_reset_ttl == timedelta(minutes=30)
