"""Advisory token cache keyed by a digest of the OAuth scope.

The backing store is anything that satisfies ``KeyValueStore``. A failing
store never blocks a request: reads degrade to a miss and writes to a no-op.
"""

import hashlib
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import structlog

from terms_gateway.errors import CacheError

log = structlog.get_logger()


class KeyValueStore(Protocol):
    def lookup(self, key: bytes) -> bytes | None: ...

    def insert(self, key: bytes, value: bytes, ttl: float) -> None: ...


@dataclass(frozen=True)
class CachedCredential:
    token: str
    remaining_ttl: float


def scope_fingerprint(scope: str) -> bytes:
    return hashlib.sha256(scope.encode("utf-8")).digest()


class MemoryStore:
    """Process-local ``KeyValueStore`` with per-entry expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[bytes, tuple[bytes, float]] = {}

    def lookup(self, key: bytes) -> bytes | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def insert(self, key: bytes, value: bytes, ttl: float) -> None:
        if ttl <= 0:
            raise CacheError(f"refusing to cache with non-positive ttl {ttl}")
        self._entries[key] = (value, self._clock() + ttl)

    def remaining_ttl(self, key: bytes) -> float | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        remaining = entry[1] - self._clock()
        return remaining if remaining > 0 else None


class CredentialCache:
    def __init__(self, store: KeyValueStore):
        self._store = store

    def lookup(self, fingerprint: bytes) -> str | None:
        # any store or decoding failure is a miss
        try:
            raw = self._store.lookup(fingerprint)
            if raw is None:
                return None
            return raw.decode("utf-8")
        except Exception:
            log.warning("token_cache_lookup_failed", exc_info=True)
            return None

    def store(self, fingerprint: bytes, credential: CachedCredential) -> bool:
        try:
            self._store.insert(
                fingerprint, credential.token.encode("utf-8"), credential.remaining_ttl
            )
        except Exception:
            log.warning("token_cache_insert_failed", exc_info=True)
            return False
        return True
