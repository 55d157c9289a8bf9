"""Service-account bearer tokens via the OAuth 2.0 JWT-bearer grant.

A cache hit costs one key-value lookup. A miss signs a fresh RS256 assertion
and exchanges it at the identity provider, then caches the token for the
``expires_in`` the provider reported.
"""

import asyncio
import time
from typing import Any, Callable

import httpx
import structlog
from google.auth import crypt
from google.auth import jwt

from terms_gateway.auth.credential_cache import (
    CachedCredential,
    CredentialCache,
    MemoryStore,
    scope_fingerprint,
)
from terms_gateway.config import Settings, settings
from terms_gateway.errors import AuthError, TransportError

log = structlog.get_logger()


def normalize_private_key(raw: str) -> str:
    """Keys arrive as single-line config values with literal ``\\n`` sequences."""
    return raw.replace("\\n", "\n")


def build_assertion_claims(
    cfg: Settings, scope: str, issued_at: int
) -> dict[str, Any]:
    return {
        "scope": scope,
        "iss": cfg.service_account_email,
        "aud": cfg.gcp_aud,
        "iat": issued_at,
        "exp": issued_at + cfg.assertion_lifetime,
    }


def sign_assertion(cfg: Settings, claims: dict[str, Any]) -> str:
    if not cfg.service_account_key:
        raise AuthError("service account private key is not configured")
    try:
        signer = crypt.RSASigner.from_string(normalize_private_key(cfg.service_account_key))
    except (ValueError, TypeError) as e:
        raise AuthError(f"service account private key is malformed: {e}") from e
    try:
        return jwt.encode(signer, claims).decode("ascii")
    except (ValueError, TypeError) as e:
        raise AuthError(f"failed to sign token assertion: {e}") from e


class TokenProvider:
    def __init__(
        self,
        cfg: Settings,
        cache: CredentialCache,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cfg = cfg
        self.cache = cache
        self.http_client = http_client
        self.clock = clock
        self._locks: dict[bytes, asyncio.Lock] = {}

    async def acquire(self, scope: str) -> str:
        fingerprint = scope_fingerprint(scope)
        token = self.cache.lookup(fingerprint)
        if token:
            log.debug("token_cache_hit", scope=scope)
            return token

        if not self.cfg.token_single_flight:
            return await self._refresh(scope, fingerprint)

        lock = self._locks.setdefault(fingerprint, asyncio.Lock())
        async with lock:
            # another coroutine may have refreshed while we waited
            token = self.cache.lookup(fingerprint)
            if token:
                log.debug("token_cache_hit", scope=scope, coalesced=True)
                return token
            return await self._refresh(scope, fingerprint)

    async def _refresh(self, scope: str, fingerprint: bytes) -> str:
        log.info("token_cache_miss", scope=scope)
        claims = build_assertion_claims(self.cfg, scope, int(self.clock()))
        assertion = sign_assertion(self.cfg, claims)

        access_token, expires_in = await self._exchange(assertion)

        self.cache.store(
            fingerprint, CachedCredential(token=access_token, remaining_ttl=expires_in)
        )
        log.info("token_acquired", scope=scope, expires_in=expires_in)
        return access_token

    async def _exchange(self, assertion: str) -> tuple[str, int]:
        form = {"grant_type": self.cfg.grant_type, "assertion": assertion}
        try:
            if self.http_client is not None:
                resp = await self.http_client.post(self.cfg.gcp_aud, data=form)
            else:
                async with httpx.AsyncClient(timeout=self.cfg.http_timeout_seconds) as client:
                    resp = await client.post(self.cfg.gcp_aud, data=form)
        except httpx.RequestError as e:
            msg = f"Request to identity provider failed: {e}"
            log.error("token_exchange_transport_error", error=str(e))
            raise TransportError(msg) from e

        if not resp.is_success:
            msg = f"Identity provider rejected token exchange: {resp.text}"
            log.error("token_exchange_rejected", status=resp.status_code, body=resp.text)
            raise AuthError(msg, status_code=resp.status_code, body=resp.text)

        try:
            body = resp.json()
        except ValueError as e:
            log.error("token_exchange_bad_json", body=resp.text)
            raise AuthError(
                "Identity provider response is not valid JSON",
                status_code=resp.status_code,
                body=resp.text,
            ) from e

        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not isinstance(access_token, str) or not access_token:
            log.error("token_exchange_missing_field", field="access_token")
            raise AuthError("Identity provider response lacks access_token")

        expires_in = body.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, int) or expires_in <= 0:
            log.error("token_exchange_missing_field", field="expires_in")
            raise AuthError("Identity provider response lacks expires_in")

        return access_token, expires_in


token_provider = TokenProvider(settings, CredentialCache(MemoryStore()))
