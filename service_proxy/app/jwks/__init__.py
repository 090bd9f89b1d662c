"""
JWKS key resolution package.

Discovers the JWKS of an issuer via OpenID Connect, converts RSA keys to
PEM and caches them per ``(issuer, kid)``.

Key points:
- Network fetches have a 10 s timeout and are never retried.
- Cached keys expire lazily after ``max_cache_age_ms``.
- Concurrent misses for one key share a single fetch.
"""

from .cache import CachedKey, KeyCache
from .resolver import KeyResolver, jwk_to_pem

__all__ = ["CachedKey", "KeyCache", "KeyResolver", "jwk_to_pem"]
