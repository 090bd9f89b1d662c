"""
Unit tests for TokenValidator.
"""

import base64
import json
import time
from unittest.mock import AsyncMock

import pytest

from service_proxy.app.claims import ClaimMapper, ClaimMatcher
from service_proxy.app.jwks import KeyResolver
from service_proxy.app.validation import IssuerConfig, TokenValidator
from shared.errors import (
    ClaimMismatchError,
    InvalidTokenError,
    KeyNotFoundError,
    MissingIssuerError,
    MissingKeyIdError,
    TokenValidationError,
)
from shared.test_helpers import (
    MockIdentityProvider,
    TEST_AUDIENCE,
    TEST_ISSUER,
    create_claims,
)


def _unsigned_token(header, payload):
    def _part(data):
        return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()
    return f"{_part(header)}.{_part(payload)}.c2lnbmF0dXJl"


class TestTokenValidator:
    """Test cases for TokenValidator."""

    @pytest.fixture
    def idp(self):
        provider = MockIdentityProvider()
        provider.add_key("key-1")
        return provider

    @pytest.fixture
    def signing_key(self, idp):
        return idp.keys[0]

    @pytest.fixture
    def resolver(self, idp):
        return KeyResolver(http_client=idp.client())

    @pytest.fixture
    def validator(self, resolver):
        """Create TokenValidator with an audience and a role filter."""
        return TokenValidator(
            IssuerConfig(issuer=TEST_ISSUER, audience=TEST_AUDIENCE, clock_tolerance=30),
            resolver,
            ClaimMatcher.from_config({"roles": "admin"}),
            ClaimMapper({"email": "X-AUTH-EMAIL"}, "X-AUTH-"),
        )

    async def _assert_rejected(self, validator, token, cause_type, match=None, **kwargs):
        with pytest.raises(TokenValidationError) as exc_info:
            await validator.validate_token(token, **kwargs)
        assert isinstance(exc_info.value.__cause__, cause_type)
        assert str(exc_info.value).startswith("JWT validation failed: ")
        if match:
            assert match in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_valid_token(self, validator, signing_key):
        """Test a correctly signed token returns its claims."""
        token = signing_key.sign(create_claims(roles=["user", "admin"]))

        claims = await validator.validate_token(token)

        assert claims["sub"] == "user1"
        assert claims["iss"] == TEST_ISSUER
        assert validator.map_claims(claims) == {"X-AUTH-EMAIL": "john.doe@example.com"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, ""])
    async def test_empty_token(self, validator, token):
        await self._assert_rejected(validator, token, InvalidTokenError)

    @pytest.mark.asyncio
    async def test_not_three_parts(self, validator):
        await self._assert_rejected(validator, "abc.def", InvalidTokenError, "Invalid JWT token format")

    @pytest.mark.asyncio
    async def test_undecodable_header(self, validator):
        await self._assert_rejected(validator, "!!!.###.$$$", InvalidTokenError)

    @pytest.mark.asyncio
    async def test_missing_kid(self, validator):
        token = _unsigned_token({"alg": "RS256"}, create_claims())

        await self._assert_rejected(validator, token, MissingKeyIdError, "kid")

    @pytest.mark.asyncio
    async def test_missing_issuer(self, validator):
        claims = create_claims()
        del claims["iss"]
        token = _unsigned_token({"alg": "RS256", "kid": "key-1"}, claims)

        await self._assert_rejected(validator, token, MissingIssuerError, "iss")

    @pytest.mark.asyncio
    async def test_unknown_kid(self, validator, idp):
        stranger = MockIdentityProvider().add_key("unknown-key")
        token = stranger.sign(create_claims(roles=["admin"]))

        await self._assert_rejected(validator, token, KeyNotFoundError, "unknown-key")

    @pytest.mark.asyncio
    async def test_bad_signature(self, validator):
        impostor = MockIdentityProvider().add_key("key-1")
        token = impostor.sign(create_claims(roles=["admin"]))

        await self._assert_rejected(validator, token, Exception, "Signature")

    @pytest.mark.asyncio
    async def test_wrong_issuer(self, validator, signing_key):
        token = signing_key.sign(create_claims(issuer="https://evil.example.com", roles=["admin"]))

        await self._assert_rejected(validator, token, Exception, "issuer")

    @pytest.mark.asyncio
    async def test_wrong_audience(self, validator, signing_key):
        token = signing_key.sign(create_claims(audience="someone-else", roles=["admin"]))

        await self._assert_rejected(validator, token, Exception, "audience")

    @pytest.mark.asyncio
    async def test_audience_not_checked_when_unset(self, resolver, signing_key):
        validator = TokenValidator(IssuerConfig(issuer=TEST_ISSUER), resolver)
        token = signing_key.sign(create_claims(audience="anything"))

        claims = await validator.validate_token(token)

        assert claims["aud"] == "anything"

    @pytest.mark.asyncio
    async def test_expired_token(self, validator, signing_key):
        token = signing_key.sign(create_claims(expires_in=-120, roles=["admin"]))

        await self._assert_rejected(validator, token, Exception, "expired")

    @pytest.mark.asyncio
    async def test_expiry_within_clock_tolerance(self, validator, signing_key):
        """Test a token expired less than clock_tolerance ago is accepted."""
        token = signing_key.sign(create_claims(expires_in=-10, roles=["admin"]))

        claims = await validator.validate_token(token)

        assert claims["sub"] == "user1"

    @pytest.mark.asyncio
    async def test_not_yet_valid(self, validator, signing_key):
        token = signing_key.sign(create_claims(nbf=int(time.time()) + 600, roles=["admin"]))

        await self._assert_rejected(validator, token, Exception)

    @pytest.mark.asyncio
    async def test_claim_filter_failure(self, validator, signing_key):
        token = signing_key.sign(create_claims(roles=["user", "guest"]))

        await self._assert_rejected(validator, token, ClaimMismatchError, "roles")

    @pytest.mark.asyncio
    async def test_public_key_override_skips_discovery(self, signing_key):
        resolver = AsyncMock(spec=KeyResolver)
        validator = TokenValidator(IssuerConfig(issuer=TEST_ISSUER, audience=TEST_AUDIENCE), resolver)
        token = signing_key.sign(create_claims())

        claims = await validator.validate_token(token, public_key=signing_key.public_pem)

        assert claims["sub"] == "user1"
        resolver.resolve_public_key.assert_not_called()

    @pytest.mark.asyncio
    async def test_signature_only_requires_opt_in(self, validator, signing_key):
        token = signing_key.sign(create_claims(roles=["admin"]))

        with pytest.raises(ValueError, match="signature_only"):
            await validator.validate_token(token, signature_only=True)

    @pytest.mark.asyncio
    async def test_signature_only_ignores_expiry(self, resolver, signing_key):
        validator = TokenValidator(
            IssuerConfig(issuer=TEST_ISSUER, audience=TEST_AUDIENCE),
            resolver,
            allow_signature_only=True,
        )
        token = signing_key.sign(create_claims(expires_in=-86400))

        claims = await validator.validate_token(token, signature_only=True)

        assert claims["sub"] == "user1"
        with pytest.raises(TokenValidationError):
            await validator.validate_token(token)

    @pytest.mark.asyncio
    async def test_resolver_uses_configured_issuer_and_age(self, signing_key):
        resolver = AsyncMock(spec=KeyResolver)
        resolver.resolve_public_key.return_value = signing_key.public_pem
        validator = TokenValidator(
            IssuerConfig(issuer=TEST_ISSUER, audience=TEST_AUDIENCE, max_cache_age_ms=1234),
            resolver,
        )

        await validator.validate_token(signing_key.sign(create_claims()))

        resolver.resolve_public_key.assert_awaited_once_with(TEST_ISSUER, "key-1", 1234)


class TestIssuerConfig:
    """Test cases for IssuerConfig."""

    def test_defaults(self):
        config = IssuerConfig(issuer=TEST_ISSUER)

        assert config.clock_tolerance == 30
        assert config.max_cache_age_ms == 86_400_000
        assert config.audience is None

    def test_negative_tolerance(self):
        with pytest.raises(ValueError):
            IssuerConfig(issuer=TEST_ISSUER, clock_tolerance=-1)

    def test_empty_issuer(self):
        with pytest.raises(ValueError):
            IssuerConfig(issuer="")
