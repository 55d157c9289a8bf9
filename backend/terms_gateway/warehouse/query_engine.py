from datetime import date
from typing import Any

import structlog

from terms_gateway.config import settings
from terms_gateway.models.terms_models import TopRisingTerm
from .bigquery_client import BigQueryClient, bq_client
from .range_filter import build_filter
from .response_decoder import decode_response
from .sql_templates import insert_statement, select_statement

log = structlog.get_logger()


class TermsQueryEngine:
    """Insert path: payload → INSERT → BigQuery.
    Select path: bounds → filter → SELECT → BigQuery → decoded records.
    """

    def __init__(self, client: BigQueryClient, urlencoded_column: str):
        self.client = client
        self.urlencoded_column = urlencoded_column

    async def insert(self, term: TopRisingTerm) -> None:
        statement = insert_statement(self.client.full_table, term)
        await self.client.run_query(statement.sql, statement.params)
        log.info("terms_inserted", term=term.term, dma_id=term.dma_id, week=str(term.week))

    async def select(
        self,
        from_date: date | None,
        to_date: date | None,
        today: date | None = None,
    ) -> list[dict[str, Any]]:
        clause = build_filter(from_date, to_date, today=today)
        statement = select_statement(self.client.full_table, clause)
        payload = await self.client.run_query(statement.sql, statement.params)
        records = decode_response(payload, self.urlencoded_column, query=statement.sql)
        log.info("terms_selected", count=len(records))
        return records


query_engine = TermsQueryEngine(bq_client, settings.urlencoded_column)
