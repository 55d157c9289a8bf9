"""Turn optional ``from`` / ``to`` query-string dates into a WHERE condition.

Weeks start on Sunday, matching BigQuery's ``DATE_TRUNC(..., WEEK)``.
Bounds are bound as DATE query parameters, never spliced into the text.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

import structlog
from google.cloud import bigquery

from terms_gateway.errors import RangeError

log = structlog.get_logger()

DATE_FORMAT = "%Y-%m-%d"
CURRENT_WEEK = "week >= DATE_TRUNC(CURRENT_DATE(), WEEK)"


@dataclass(frozen=True)
class FilterClause:
    condition: str
    params: list[bigquery.ScalarQueryParameter] = field(default_factory=list)


def parse_bound(value: str | None, name: str) -> date | None:
    if value is None:
        return None
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError as e:
        msg = f"query string `{name}`: {value!r} is not a valid date (expected YYYY-MM-DD)"
        log.warning("range_parse_failed", bound=name, value=value)
        raise RangeError(msg) from e


def most_recent_sunday(today: date) -> date:
    # Monday is 0 in Python; Sunday-based offset is (weekday + 1) % 7
    return today - timedelta(days=(today.weekday() + 1) % 7)


def build_filter(
    from_date: date | None,
    to_date: date | None,
    today: date | None = None,
) -> FilterClause:
    if from_date is None and to_date is None:
        return FilterClause(CURRENT_WEEK)

    if from_date is not None and to_date is None:
        return FilterClause("week >= @from_date", [_date_param("from_date", from_date)])

    if from_date is None:
        today = today or datetime.now(timezone.utc).date()
        week_start = most_recent_sunday(today)
        if to_date < week_start:
            msg = f"query string `to`: {to_date} is before the current week ({week_start})"
            log.warning("range_rejected", to=str(to_date), week_start=str(week_start))
            raise RangeError(msg)
        return FilterClause(f"{CURRENT_WEEK} AND week <= @to_date", [_date_param("to_date", to_date)])

    if to_date < from_date:
        msg = f"query string `from`: {from_date} or `to`: {to_date} is not valid"
        log.warning("range_rejected", **{"from": str(from_date), "to": str(to_date)})
        raise RangeError(msg)
    return FilterClause(
        "date >= @from_date AND date <= @to_date",
        [_date_param("from_date", from_date), _date_param("to_date", to_date)],
    )


def _date_param(name: str, value: date) -> bigquery.ScalarQueryParameter:
    return bigquery.ScalarQueryParameter(name, "DATE", value)
