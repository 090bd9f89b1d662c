"""
Token validation for the JWT proxy.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from jose import jwt
from jose.exceptions import JOSEError

from shared.errors import (
    InvalidTokenError,
    MissingIssuerError,
    MissingKeyIdError,
    TokenError,
    TokenValidationError,
)
from shared.logging import get_logger, shorten

from ..claims import ClaimMapper, ClaimMatcher
from ..jwks import KeyResolver
from ..jwks.resolver import DEFAULT_MAX_CACHE_AGE_MS

RSA_ALGORITHMS = ["RS256", "RS384", "RS512"]


@dataclass(frozen=True)
class IssuerConfig:
    """Verification parameters for one trusted issuer."""

    issuer: str
    audience: Optional[str] = None
    clock_tolerance: int = 30
    max_cache_age_ms: int = DEFAULT_MAX_CACHE_AGE_MS

    def __post_init__(self):
        if not self.issuer:
            raise ValueError("issuer must not be empty")
        if self.clock_tolerance < 0:
            raise ValueError("clock_tolerance must be >= 0")
        if self.max_cache_age_ms < 0:
            raise ValueError("max_cache_age_ms must be >= 0")

    @classmethod
    def from_jwt_config(cls, config: Any) -> "IssuerConfig":
        return cls(
            issuer=config.issuer,
            audience=config.audience,
            clock_tolerance=config.clock_tolerance,
            max_cache_age_ms=config.max_cache_age_ms,
        )


class TokenValidator:
    """Verifies bearer JWTs against a single issuer.

    Every failure, whatever its origin, is raised as ``TokenValidationError``
    with the narrow error attached as ``__cause__``.
    """

    def __init__(
        self,
        issuer_config: IssuerConfig,
        key_resolver: KeyResolver,
        matcher: Optional[ClaimMatcher] = None,
        mapper: Optional[ClaimMapper] = None,
        *,
        allow_signature_only: bool = False,
    ):
        self.issuer_config = issuer_config
        self.key_resolver = key_resolver
        self.matcher = matcher or ClaimMatcher([])
        self.mapper = mapper
        self.allow_signature_only = allow_signature_only
        self.logger = get_logger("proxy.token_validator")

    async def validate_token(
        self,
        token: Optional[str],
        *,
        signature_only: bool = False,
        public_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Validate ``token`` and return its verified claims.

        ``signature_only`` skips the expiry check (used to test live tokens
        against a rotated key) and is refused unless the validator was built
        with ``allow_signature_only=True``. ``public_key`` bypasses key
        discovery.
        """
        if signature_only and not self.allow_signature_only:
            raise ValueError("signature_only validation is not enabled for this validator")

        try:
            claims = await self._validate(token, signature_only, public_key)
        except (TokenError, JOSEError) as exc:
            self.logger.error(
                "JWT validation failed",
                error=str(exc),
                error_type=type(exc).__name__,
                token=shorten(token),
            )
            raise TokenValidationError(str(exc)) from exc

        self.logger.debug(
            "JWT token validated successfully",
            sub=claims.get("sub"),
            iss=claims.get("iss"),
            exp=claims.get("exp"),
            signature_only=signature_only,
        )
        return claims

    def map_claims(self, claims: Dict[str, Any]) -> Dict[str, str]:
        """Project claims onto headers with the configured mapper."""
        if self.mapper is None:
            return {}
        return self.mapper.project(claims)

    async def _validate(
        self,
        token: Optional[str],
        signature_only: bool,
        public_key: Optional[str],
    ) -> Dict[str, Any]:
        if not token:
            raise InvalidTokenError("No JWT token provided")

        if token.count(".") != 2:
            raise InvalidTokenError("Invalid JWT token format")
        try:
            header = jwt.get_unverified_header(token)
            unverified = jwt.get_unverified_claims(token)
        except JOSEError as exc:
            raise InvalidTokenError(f"Invalid JWT token format: {exc}") from exc

        key_id = header.get("kid")
        if not key_id:
            raise MissingKeyIdError("JWT token missing key ID (kid) in header")
        if not unverified.get("iss"):
            raise MissingIssuerError("JWT token missing issuer (iss) in payload")

        config = self.issuer_config
        if public_key is None:
            public_key = await self.key_resolver.resolve_public_key(
                config.issuer,
                key_id,
                config.max_cache_age_ms,
            )

        options = {
            "verify_aud": config.audience is not None,
            "verify_exp": not signature_only,
            "leeway": config.clock_tolerance,
        }
        claims = jwt.decode(
            token,
            public_key,
            algorithms=RSA_ALGORITHMS,
            audience=config.audience,
            issuer=config.issuer,
            options=options,
        )

        self.matcher.matches(claims)
        return claims
