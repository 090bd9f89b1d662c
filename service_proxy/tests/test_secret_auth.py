"""
Unit tests for SecretAuthenticator.
"""

import pytest

from service_proxy.app.validation import SecretAuthenticator
from service_proxy.app.validation.secret import SECRET_EMAIL, SECRET_SUBJECT, SECRET_TOKEN_LIFETIME
from shared.test_helpers import FakeClock, TEST_AUDIENCE, TEST_ISSUER


class TestSecretAuthenticator:
    """Test cases for SecretAuthenticator."""

    @pytest.fixture
    def clock(self):
        return FakeClock(start=1_000.0)

    @pytest.fixture
    def authenticator(self, clock):
        return SecretAuthenticator("s3cr3t-value", TEST_ISSUER, TEST_AUDIENCE, clock=clock)

    def test_matching_secret_yields_claims(self, authenticator):
        claims = authenticator.try_authenticate("s3cr3t-value")

        assert claims == {
            "iss": TEST_ISSUER,
            "aud": TEST_AUDIENCE,
            "sub": SECRET_SUBJECT,
            "email": SECRET_EMAIL,
            "iat": 1000,
            "exp": 1000 + SECRET_TOKEN_LIFETIME,
        }

    @pytest.mark.parametrize("token", ["wrong", "s3cr3t-valu", "s3cr3t-value ", "", None])
    def test_other_tokens_fall_through(self, authenticator, token):
        assert authenticator.try_authenticate(token) is None

    @pytest.mark.parametrize("secret", [None, ""])
    def test_disabled_without_secret(self, secret):
        authenticator = SecretAuthenticator(secret, TEST_ISSUER)

        assert not authenticator.enabled
        assert authenticator.try_authenticate("") is None
        assert authenticator.try_authenticate("anything") is None

    def test_enabled(self, authenticator):
        assert authenticator.enabled
