"""Decode the ``schema.fields`` / ``rows[].f[].v`` shape of a jobs.query response.

BigQuery returns every cell as a string (or null). Integer columns are turned
back into ``int``; everything else stays text, with the one URL-encoded column
percent-decoded.
"""

import re
from typing import Any
from urllib.parse import unquote

import structlog

from terms_gateway.errors import DecodeError

log = structlog.get_logger()

_INTEGER_TEXT = re.compile(r"[+-]?[0-9]+")

INTEGER_TYPES = frozenset({"INTEGER", "INT64"})
DEFAULT_URLENCODED_COLUMN = "update"


def _to_int(value: Any) -> int:
    if not isinstance(value, str) or not _INTEGER_TEXT.fullmatch(value):
        return 0
    return int(value)


def _to_text(value: Any, urlencoded: bool) -> str:
    text = value if isinstance(value, str) else ""
    return unquote(text, errors="strict") if urlencoded else text


def decode_rows(
    fields: list[dict[str, Any]],
    rows: list[dict[str, Any]],
    urlencoded_column: str = DEFAULT_URLENCODED_COLUMN,
) -> list[dict[str, Any]]:
    """Return one dict per row, keys in schema order, rows in response order.

    Raises:
        DecodeError: If a field lacks a name or a row's cell count does not
            match the schema, or the URL-encoded column does not decode.
    """
    names: list[str] = []
    for f in fields:
        name = f.get("name") if isinstance(f, dict) else None
        if not isinstance(name, str):
            raise DecodeError(f"schema field without a name: {f!r}")
        names.append(name)

    records: list[dict[str, Any]] = []
    for index, row in enumerate(rows):
        cells = row.get("f") if isinstance(row, dict) else None
        if not isinstance(cells, list):
            raise DecodeError(f"row {index} has no cell array")
        if len(cells) != len(fields):
            raise DecodeError(
                f"row {index} has {len(cells)} cells but schema has {len(fields)} fields"
            )

        record: dict[str, Any] = {}
        for name, field, cell in zip(names, fields, cells):
            value = cell.get("v") if isinstance(cell, dict) else None
            if field.get("type") in INTEGER_TYPES:
                record[name] = _to_int(value)
            else:
                try:
                    record[name] = _to_text(value, urlencoded=name == urlencoded_column)
                except UnicodeDecodeError as e:
                    raise DecodeError(
                        f"row {index} column {name!r} is not valid percent-encoded UTF-8: {e}"
                    ) from e
        records.append(record)
    return records


def decode_response(
    payload: Any,
    urlencoded_column: str = DEFAULT_URLENCODED_COLUMN,
    query: str | None = None,
) -> list[dict[str, Any]]:
    schema = payload.get("schema") if isinstance(payload, dict) else None
    fields = schema.get("fields") if isinstance(schema, dict) else None
    if not isinstance(fields, list):
        raise DecodeError("BQ response format doesn't include schema.fields", query=query)

    rows = payload.get("rows")
    if rows is None:
        log.info("bq_no_rows", query=query)
        return []
    if not isinstance(rows, list):
        raise DecodeError("BQ response rows is not an array", query=query)

    try:
        return decode_rows(fields, rows, urlencoded_column)
    except DecodeError as e:
        raise DecodeError(e.message, query=query) from e
