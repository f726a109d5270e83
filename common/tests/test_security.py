"""Tests for session tokens and settings."""

import time

import jwt
import pytest

from common.errors import AuthenticationError
from common.security import (
    BuyerSession,
    ProviderSession,
    mint_session_token,
    session_from_header,
    verify_session_token,
)
from common.settings import Settings


class TestSessionTokens:
    """Tests for minting and resolving bearer sessions."""

    def test_provider_token_resolves_to_provider_session(self, settings):
        token = mint_session_token(settings, "user-1", "provider", "p@example.com")

        session = verify_session_token(settings, token)

        assert isinstance(session, ProviderSession)
        assert session.user_id == "user-1"
        assert session.email == "p@example.com"

    def test_buyer_token_resolves_to_buyer_session(self, settings):
        session = verify_session_token(settings, mint_session_token(settings, "user-2", "buyer"))
        assert isinstance(session, BuyerSession)

    def test_unknown_role_rejected(self, settings):
        token = mint_session_token(settings, "user-3", "admin")

        with pytest.raises(AuthenticationError, match="provider or buyer"):
            verify_session_token(settings, token)

    def test_wrong_secret_rejected(self, settings):
        other = settings.model_copy(update={"jwt_secret": "another-secret-for-session-tokens-0123456789"})
        token = mint_session_token(other, "user-1", "provider")

        with pytest.raises(AuthenticationError):
            verify_session_token(settings, token)

    def test_expired_token_rejected(self, settings):
        now = int(time.time())
        token = jwt.encode(
            {"iss": settings.jwt_issuer, "sub": "user-1", "role": "buyer", "iat": now - 100, "exp": now - 10},
            settings.jwt_secret,
            algorithm="HS256",
        )

        with pytest.raises(AuthenticationError):
            verify_session_token(settings, token)

    @pytest.mark.parametrize("header", [None, "", "Token abc", "Basic dXNlcjpwYXNz"])
    def test_missing_or_malformed_header(self, settings, header):
        with pytest.raises(AuthenticationError, match="Authentication required"):
            session_from_header(settings, header)


class TestSettings:
    """Tests for derived settings."""

    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "BALANCE_SCAN_LIMIT", "TRANSACTION_LIST_LIMIT"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)

        assert settings.database_url == "memory://"
        assert settings.balance_scan_limit == 1000
        assert settings.transaction_list_limit == 100

    def test_database_not_configured(self):
        assert Settings(_env_file=None, database_url="").database_configured is False

    def test_stripe_configured(self):
        assert Settings(_env_file=None, stripe_secret_key="sk_test_x").stripe_configured is True
        assert Settings(_env_file=None, stripe_secret_key=None).stripe_configured is False

    def test_allowed_origins(self):
        settings = Settings(_env_file=None, cors_origins="https://a.example, https://b.example")
        assert settings.allowed_origins == ["https://a.example", "https://b.example"]
