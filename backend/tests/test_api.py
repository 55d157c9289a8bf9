import json

import httpx
import pytest
from httpx import AsyncClient, ASGITransport

from conftest import cached_provider, mock_client
from terms_gateway.auth.credential_cache import CredentialCache, MemoryStore
from terms_gateway.auth.token_provider import TokenProvider
from terms_gateway.main import app, get_query_engine
from terms_gateway.warehouse.bigquery_client import BigQueryClient
from terms_gateway.warehouse.query_engine import TermsQueryEngine

TERM = {
    "refresh_date": "2024-01-09",
    "dma_name": "Denver CO",
    "dma_id": 751,
    "term": "broncos",
    "week": "2024-01-07",
    "score": 100,
    "rank": 1,
    "percent_gain": 3150,
}

SCHEMA = {
    "fields": [
        {"name": "term", "type": "STRING"},
        {"name": "score", "type": "INTEGER"},
        {"name": "update", "type": "STRING"},
    ]
}


class FakeBigQuery:
    def __init__(self, status: int = 200, body=None):
        self.status = status
        self.body = {"schema": SCHEMA, "jobComplete": True} if body is None else body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.body, str):
            return httpx.Response(self.status, text=self.body)
        return httpx.Response(self.status, json=self.body)


@pytest.fixture
def use_bigquery(cfg):
    def install(fake: FakeBigQuery, provider: TokenProvider | None = None) -> FakeBigQuery:
        client = BigQueryClient(
            cfg, provider or cached_provider(cfg), http_client=mock_client(fake)
        )
        engine = TermsQueryEngine(client, cfg.urlencoded_column)
        app.dependency_overrides[get_query_engine] = lambda: engine
        return fake

    yield install
    app.dependency_overrides.clear()


def api_client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health():
    async with api_client() as client:
        r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_select_returns_typed_records(use_bigquery):
    fake = use_bigquery(FakeBigQuery(body={
        "schema": SCHEMA,
        "rows": [
            {"f": [{"v": "broncos"}, {"v": "100"}, {"v": "week%201"}]},
            {"f": [{"v": "nuggets"}, {"v": "87"}, {"v": None}]},
        ],
    }))
    async with api_client() as client:
        r = await client.get("/top-rising-terms", params={"from": "2024-01-01", "to": "2024-01-31"})

    assert r.status_code == 200
    assert r.json() == [
        {"term": "broncos", "score": 100, "update": "week 1"},
        {"term": "nuggets", "score": 87, "update": ""},
    ]
    sent = json.loads(fake.requests[0].content)
    assert sent["query"].endswith("WHERE date >= @from_date AND date <= @to_date")
    assert [p["name"] for p in sent["queryParameters"]] == ["from_date", "to_date"]


@pytest.mark.asyncio
async def test_select_without_rows_returns_empty_array(use_bigquery):
    fake = use_bigquery(FakeBigQuery())
    async with api_client() as client:
        r = await client.get("/top-rising-terms")

    assert r.status_code == 200
    assert r.json() == []
    sent = json.loads(fake.requests[0].content)
    assert sent["query"].endswith("WHERE week >= DATE_TRUNC(CURRENT_DATE(), WEEK)")
    assert "queryParameters" not in sent


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "params",
    [
        {"from": "2024-01-01", "to": "2023-12-31"},
        {"to": "2001-01-01"},
        {"from": "not-a-date"},
        {"from": "2024-01-01", "to": "2024/01/31"},
    ],
)
async def test_bad_range_is_client_error_and_sends_nothing(use_bigquery, params):
    fake = use_bigquery(FakeBigQuery())
    async with api_client() as client:
        r = await client.get("/top-rising-terms", params=params)

    assert r.status_code == 400
    assert "detail" in r.json()
    assert fake.requests == []


@pytest.mark.asyncio
async def test_upstream_rejection_is_bad_gateway_with_query(use_bigquery):
    use_bigquery(FakeBigQuery(status=403, body={"error": {"message": "Access Denied"}}))
    async with api_client() as client:
        r = await client.get("/top-rising-terms", params={"from": "2024-01-01"})

    assert r.status_code == 502
    body = r.json()
    assert "Access Denied" in body["detail"]
    assert body["query"].startswith("SELECT * FROM `trends-dev-p001.google_trends.top_rising_terms`")


@pytest.mark.asyncio
async def test_malformed_upstream_json_is_bad_gateway(use_bigquery):
    use_bigquery(FakeBigQuery(body="<html>oops</html>"))
    async with api_client() as client:
        r = await client.get("/top-rising-terms")

    assert r.status_code == 502
    assert "NOT valid JSON" in r.json()["detail"]


@pytest.mark.asyncio
async def test_missing_schema_is_bad_gateway(use_bigquery):
    use_bigquery(FakeBigQuery(body={"rows": []}))
    async with api_client() as client:
        r = await client.get("/top-rising-terms")

    assert r.status_code == 502
    assert "schema.fields" in r.json()["detail"]


@pytest.mark.asyncio
async def test_identity_provider_rejection_is_server_error(cfg, use_bigquery):
    def idp(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid_client"})

    provider = TokenProvider(cfg, CredentialCache(MemoryStore()), http_client=mock_client(idp))
    fake = use_bigquery(FakeBigQuery(), provider=provider)
    async with api_client() as client:
        r = await client.get("/top-rising-terms")

    assert r.status_code == 500
    assert "invalid_client" in r.json()["detail"]
    assert r.json()["query"].startswith("SELECT * FROM ")
    assert fake.requests == []


@pytest.mark.asyncio
async def test_insert_sends_parameterized_statement(use_bigquery):
    fake = use_bigquery(FakeBigQuery(body={"kind": "bigquery#queryResponse", "jobComplete": True}))
    async with api_client() as client:
        r = await client.post("/top-rising-terms", json=TERM)

    assert r.status_code == 200
    assert r.json() == {"status": "inserted"}
    sent = json.loads(fake.requests[0].content)
    assert sent["query"].startswith("INSERT INTO `trends-dev-p001.google_trends.top_rising_terms`")
    assert "broncos" not in sent["query"]
    values = {p["name"]: p["parameterValue"]["value"] for p in sent["queryParameters"]}
    assert values["term"] == "broncos"
    assert values["dma_id"] == "751"


@pytest.mark.asyncio
async def test_insert_with_invalid_payload_is_rejected(use_bigquery):
    fake = use_bigquery(FakeBigQuery())
    async with api_client() as client:
        r = await client.post("/top-rising-terms", json={**TERM, "score": "high"})

    assert r.status_code == 422
    assert fake.requests == []
