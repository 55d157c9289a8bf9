from collections.abc import Sequence
from typing import Any

import httpx
import structlog
from google.cloud import bigquery

from terms_gateway.auth.token_provider import TokenProvider, token_provider
from terms_gateway.config import Settings, settings
from terms_gateway.errors import AuthError, DecodeError, TransportError, UpstreamRejection

log = structlog.get_logger()

QUERY_REQUEST_KIND = "bigquery#queryRequest"


def build_query_request(
    cfg: Settings,
    sql: str,
    params: Sequence[bigquery.ScalarQueryParameter] = (),
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "kind": QUERY_REQUEST_KIND,
        "query": sql,
        "location": cfg.bigquery_location,
        "useLegacySql": False,
    }
    if params:
        body["parameterMode"] = "NAMED"
        body["queryParameters"] = [p.to_api_repr() for p in params]
    return body


class BigQueryClient:
    """Runs one statement per call through the REST ``jobs.query`` endpoint."""

    def __init__(
        self,
        cfg: Settings,
        tokens: TokenProvider,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.cfg = cfg
        self.tokens = tokens
        self.http_client = http_client
        self.full_table = cfg.bigquery_full_table

    async def run_query(
        self,
        sql: str,
        params: Sequence[bigquery.ScalarQueryParameter] = (),
    ) -> dict[str, Any]:
        try:
            access_token = await self.tokens.acquire(self.cfg.bigquery_scope)
        except (AuthError, TransportError) as e:
            e.query = e.query or sql
            raise
        body = build_query_request(self.cfg, sql, params)
        headers = {"Authorization": f"Bearer {access_token}"}

        log.info("bq_query", query=sql, params=len(params))
        try:
            if self.http_client is not None:
                resp = await self.http_client.post(
                    self.cfg.bigquery_queries_url, json=body, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self.cfg.http_timeout_seconds) as client:
                    resp = await client.post(
                        self.cfg.bigquery_queries_url, json=body, headers=headers
                    )
        except httpx.RequestError as e:
            log.error("bq_transport_error", error=str(e), query=sql)
            raise TransportError(f"BQ Query Request error: {e}", query=sql) from e

        if not resp.is_success:
            log.error("bq_query_rejected", status=resp.status_code, body=resp.text, query=sql)
            raise UpstreamRejection(
                f"BQ Query Request error: {resp.text}",
                status_code=resp.status_code,
                body=resp.text,
                query=sql,
            )

        try:
            payload = resp.json()
        except ValueError as e:
            log.error("bq_bad_json", error=str(e), query=sql)
            raise DecodeError(f"BQ response format is NOT valid JSON: {e}", query=sql) from e
        if not isinstance(payload, dict):
            raise DecodeError("BQ response is not a JSON object", query=sql)
        return payload


bq_client = BigQueryClient(settings, token_provider)
