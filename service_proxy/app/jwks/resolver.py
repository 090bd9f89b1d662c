"""
Signing key discovery for JWT issuers.

Keys are located through OpenID Connect discovery: the issuer's
``/.well-known/openid-configuration`` names a ``jwks_uri``, the JWKS found
there is searched for the token's ``kid`` and the RSA key is converted to a
PEM encoded SubjectPublicKeyInfo.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
from jose import jwk
from jose.exceptions import JOSEError

from shared.errors import (
    KeyDiscoveryError,
    KeyFetchError,
    KeyNotFoundError,
    UnsupportedKeyError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .cache import KeyCache

DISCOVERY_PATH = "/.well-known/openid-configuration"
DEFAULT_MAX_CACHE_AGE_MS = 24 * 3600 * 1000
HTTP_TIMEOUT_SECONDS = 10.0
USER_AGENT = "jwt-proxy/1.0.0"


def jwk_to_pem(key: Dict[str, Any]) -> str:
    """Convert an RSA JWK (base64url ``n`` and ``e``) into a PEM public key."""
    if key.get("kty") != "RSA":
        raise UnsupportedKeyError(f"Unsupported key type: {key.get('kty')}")
    if not key.get("n") or not key.get("e"):
        raise UnsupportedKeyError("Invalid RSA key: missing n or e parameters")

    try:
        # Only the SPKI encoding is needed, so the JWK's own "alg" is not consulted
        public_key = jwk.construct(key, algorithm="RS256")
        pem = public_key.to_pem()
    except (JOSEError, ValueError, TypeError) as exc:
        raise UnsupportedKeyError(f"Invalid RSA key {key.get('kid')}: {exc}") from exc

    if isinstance(pem, bytes):
        pem = pem.decode("ascii")
    return pem


@dataclass(frozen=True)
class _DiscoveredJwksUri:
    jwks_uri: str
    cached_at: float


@dataclass
class _Flight:
    """Lock shared by the callers resolving one key, and how many hold or await it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    callers: int = 0


class KeyResolver:
    """Resolves and caches public keys per ``(issuer, key_id)``.

    Concurrent misses for the same key share a single discovery and JWKS
    round trip; the first caller fills the cache and the others read it.
    """

    def __init__(
        self,
        *,
        cache: Optional[KeyCache] = None,
        max_cache_age_ms: int = DEFAULT_MAX_CACHE_AGE_MS,
        http_client: Optional[httpx.AsyncClient] = None,
        http_timeout: float = HTTP_TIMEOUT_SECONDS,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.cache = cache or KeyCache()
        self.max_cache_age_ms = max_cache_age_ms
        self.metrics = metrics
        self.logger = get_logger("proxy.jwks.resolver")

        self._client = http_client or httpx.AsyncClient(
            timeout=http_timeout,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        )
        self._jwks_uris: Dict[str, _DiscoveredJwksUri] = {}
        self._inflight: Dict[tuple, _Flight] = {}

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def clear_cache(self) -> None:
        """Drop every cached key and discovered JWKS URI."""
        self.cache.clear()
        self._jwks_uris.clear()
        self.logger.debug("Signing key cache cleared")

    async def resolve_public_key(
        self,
        issuer: str,
        key_id: str,
        max_cache_age_ms: Optional[int] = None,
    ) -> str:
        """Return the PEM public key of ``key_id`` published by ``issuer``."""
        max_age = self.max_cache_age_ms if max_cache_age_ms is None else max_cache_age_ms

        cached = self.cache.get(issuer, key_id, max_age)
        if cached is not None:
            self._record_lookup(hit=True)
            self.logger.debug("Using cached public key", issuer=issuer, kid=key_id)
            return cached

        # An entry lives only while some caller holds or awaits its lock
        flight_key = (issuer, key_id)
        flight = self._inflight.get(flight_key)
        if flight is None:
            flight = self._inflight[flight_key] = _Flight()
        flight.callers += 1
        try:
            async with flight.lock:
                return await self._resolve_uncached(issuer, key_id, max_age)
        finally:
            flight.callers -= 1
            if flight.callers == 0:
                del self._inflight[flight_key]

    async def _resolve_uncached(self, issuer: str, key_id: str, max_age: int) -> str:
        # Another request may have filled the cache while we waited
        cached = self.cache.get(issuer, key_id, max_age)
        if cached is not None:
            self._record_lookup(hit=True)
            return cached

        self._record_lookup(hit=False)
        jwks_uri = await self.discover_jwks_uri(issuer, max_age)
        jwks = await self.fetch_jwks(jwks_uri)

        key = next(
            (k for k in jwks["keys"] if isinstance(k, dict) and k.get("kid") == key_id),
            None,
        )
        if key is None:
            raise KeyNotFoundError(f"Public key not found for key ID: {key_id}")

        pem = jwk_to_pem(key)
        self.cache.put(issuer, key_id, pem)
        self.logger.debug("Retrieved and cached public key", issuer=issuer, kid=key_id)
        return pem
    async def discover_jwks_uri(self, issuer: str, max_cache_age_ms: Optional[int] = None) -> str:
        """Look up ``jwks_uri`` in the issuer's OpenID configuration."""
        max_age = self.max_cache_age_ms if max_cache_age_ms is None else max_cache_age_ms
        discovered = self._jwks_uris.get(issuer)
        if discovered and (self.cache.now() - discovered.cached_at) * 1000 < max_age:
            return discovered.jwks_uri

        well_known_url = f"{issuer.rstrip('/')}{DISCOVERY_PATH}"
        try:
            config = await self._get_json(well_known_url)
            if not isinstance(config, dict):
                raise ValueError("OpenID configuration is not a JSON object")
            jwks_uri = config.get("jwks_uri")
            if not isinstance(jwks_uri, str) or not jwks_uri:
                raise ValueError("JWKS URI not found in OpenID configuration")
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.error("Failed to discover JWKS URI", issuer=issuer, error=str(exc))
            raise KeyDiscoveryError(f"Failed to discover JWKS URI: {exc}") from exc

        self._jwks_uris[issuer] = _DiscoveredJwksUri(jwks_uri=jwks_uri, cached_at=self.cache.now())
        self.logger.debug("Discovered JWKS URI", issuer=issuer, jwks_uri=jwks_uri)
        return jwks_uri

    async def fetch_jwks(self, jwks_uri: str) -> Dict[str, Any]:
        """Fetch the key set published at ``jwks_uri``."""
        try:
            jwks = await self._get_json(jwks_uri)
            if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
                raise ValueError("JWKS response missing 'keys' array")
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.error("Failed to fetch JWKS", jwks_uri=jwks_uri, error=str(exc))
            raise KeyFetchError(f"Failed to fetch JWKS: {exc}") from exc

        self.logger.debug("Fetched JWKS successfully", jwks_uri=jwks_uri, key_count=len(jwks["keys"]))
        return jwks

    async def _get_json(self, url: str) -> Any:
        response = await self._client.get(url)
        response.raise_for_status()
        return response.json()

    def _record_lookup(self, hit: bool) -> None:
        if self.metrics is not None:
            self.metrics.record_cache_lookup(hit)
