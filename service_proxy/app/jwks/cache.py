"""
In-memory signing key cache.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

CacheKey = Tuple[str, str]


@dataclass(frozen=True)
class CachedKey:
    """A PEM encoded public key and the time it was stored."""

    public_key_pem: str
    cached_at: float


class KeyCache:
    """Public keys keyed by ``(issuer, key_id)``.

    Entries expire lazily: a lookup older than ``max_age_ms`` is reported as
    a miss but the entry stays until it is overwritten or the cache is
    cleared. All access goes through one lock; entries are immutable and
    inserted whole, so a reader never sees a half populated key.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[CacheKey, CachedKey] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def get(self, issuer: str, key_id: str, max_age_ms: int) -> Optional[str]:
        """Return the cached PEM, or ``None`` when absent or too old."""
        with self._lock:
            entry = self._entries.get((issuer, key_id))
        if entry is None:
            return None
        if (self._clock() - entry.cached_at) * 1000 >= max_age_ms:
            return None
        return entry.public_key_pem

    def put(self, issuer: str, key_id: str, public_key_pem: str) -> CachedKey:
        entry = CachedKey(public_key_pem=public_key_pem, cached_at=self._clock())
        with self._lock:
            self._entries[(issuer, key_id)] = entry
        return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
