"""Tests for AuthProvider."""

import jwt

from common.auth.auth_provider import ANONYMOUS, AuthProvider


def make_token(**claims) -> str:
    return jwt.encode(claims, "test-secret-key-long-enough-for-hs256", algorithm="HS256")


class TestAuthProvider:
    def test_anonymous_without_token(self):
        provider = AuthProvider()
        assert provider.token is None
        assert provider.is_authenticated is False
        assert provider.current_user() == ANONYMOUS

    def test_identity_from_claims(self):
        """Test that the identity is read from sub/name/email without verification."""
        provider = AuthProvider(make_token(sub="u-42", name="Dana Reyes", email="dana@example.com"))

        user = provider.current_user()
        assert user.user_id == "u-42"
        assert user.full_name == "Dana Reyes"
        assert user.display_name == "Dana Reyes"

    def test_display_name_falls_back_to_email(self):
        provider = AuthProvider(make_token(sub="u-7", email="ops@example.com"))
        assert provider.current_user().display_name == "ops@example.com"

    def test_opaque_token_is_anonymous(self):
        provider = AuthProvider("not-a-jwt")
        assert provider.is_authenticated is True
        assert provider.current_user() == ANONYMOUS

    def test_clear_token(self):
        provider = AuthProvider(make_token(sub="u-1"))
        provider.clear_token()
        assert provider.token is None
        assert provider.current_user() == ANONYMOUS
