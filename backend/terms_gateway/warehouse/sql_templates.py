# Statements against the top rising terms table.
# Values are always bound as named query parameters; only the table path is
# interpolated, and only after it passes the identifier check.

import re
from dataclasses import dataclass, field

from google.cloud import bigquery

from terms_gateway.models.terms_models import TopRisingTerm
from terms_gateway.warehouse.range_filter import FilterClause

_SAFE_ID = re.compile(r'^[a-zA-Z0-9_\-]+$')

INSERT_COLUMNS = (
    "refresh_date", "dma_name", "dma_id", "term", "week", "score", "rank", "percent_gain",
)

COLUMN_TYPES: dict[str, str] = {
    "refresh_date": "DATE",
    "dma_name":     "STRING",
    "dma_id":       "INT64",
    "term":         "STRING",
    "week":         "DATE",
    "score":        "INT64",
    "rank":         "INT64",
    "percent_gain": "INT64",
}


@dataclass(frozen=True)
class Statement:
    sql: str
    params: list[bigquery.ScalarQueryParameter] = field(default_factory=list)


def quote_table(full_table: str) -> str:
    """Return ``full_table`` backtick-quoted, rejecting anything but project.dataset.table."""
    parts = full_table.split(".")
    if len(parts) != 3 or not all(_SAFE_ID.match(p) for p in parts):
        raise ValueError(f"Unsafe BigQuery table path {full_table!r}")
    return f"`{full_table}`"


def insert_statement(full_table: str, term: TopRisingTerm) -> Statement:
    columns = ", ".join(INSERT_COLUMNS)
    placeholders = ", ".join(f"@{c}" for c in INSERT_COLUMNS)
    values = term.model_dump()
    params = [
        bigquery.ScalarQueryParameter(c, COLUMN_TYPES[c], values[c]) for c in INSERT_COLUMNS
    ]
    return Statement(
        f"INSERT INTO {quote_table(full_table)} ({columns}) VALUES ({placeholders})",
        params,
    )


def select_statement(full_table: str, clause: FilterClause) -> Statement:
    return Statement(
        f"SELECT * FROM {quote_table(full_table)} WHERE {clause.condition}",
        list(clause.params),
    )
