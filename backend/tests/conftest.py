import base64
import json

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from terms_gateway.auth.credential_cache import (
    CachedCredential,
    CredentialCache,
    MemoryStore,
    scope_fingerprint,
)
from terms_gateway.auth.token_provider import TokenProvider
from terms_gateway.config import Settings

SERVICE_ACCOUNT = "terms-gateway@trends-dev-p001.iam.gserviceaccount.com"
TOKEN_URL = "https://oauth2.googleapis.com/token"
BQ_SCOPE = "https://www.googleapis.com/auth/bigquery"


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def cfg(private_key_pem) -> Settings:
    # single-line form, as it arrives from an env var
    return Settings(
        service_account_email=SERVICE_ACCOUNT,
        service_account_key=private_key_pem.replace("\n", "\\n"),
        gcp_aud=TOKEN_URL,
        bigquery_scope=BQ_SCOPE,
        gcp_project="trends-dev-p001",
        bigquery_dataset="google_trends",
        bigquery_table="top_rising_terms",
    )


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def cached_provider(cfg: Settings, token: str = "ya29.cached") -> TokenProvider:
    """A TokenProvider whose cache already holds a token for the BigQuery scope."""
    cache = CredentialCache(MemoryStore())
    cache.store(scope_fingerprint(cfg.bigquery_scope), CachedCredential(token, 3600))

    def refuse(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected token exchange to {request.url}")

    return TokenProvider(cfg, cache, http_client=mock_client(refuse))


def verify_rs256(token: str, public_key) -> dict:
    """Check the RS256 signature of ``token`` and return its claims."""
    header_b64, payload_b64, signature_b64 = token.split(".")

    def b64decode(part: str) -> bytes:
        return base64.urlsafe_b64decode(part + "=" * (-len(part) % 4))

    public_key.verify(
        b64decode(signature_b64),
        f"{header_b64}.{payload_b64}".encode(),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )
    header = json.loads(b64decode(header_b64))
    assert header["alg"] == "RS256"
    return json.loads(b64decode(payload_b64))
