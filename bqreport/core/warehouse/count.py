import logging
from decimal import Decimal

from bqreport.core.errors import CountDecodingError
from bqreport.core.warehouse.executor import Cursor, Deadline, QueryExecutor, clean_sql

logger = logging.getLogger(__name__)


def build_count_sql(query: str) -> str:
    return f"SELECT COUNT(*) AS total FROM ({clean_sql(query)})"


def read_total(cursor: Cursor) -> int:
    """
    Read the single `total` cell of a COUNT(*) result as an int.

    BigQuery returns INT64, but float (and integral NUMERIC) encodings are
    accepted too.
    """
    record = next(iter(cursor), None)
    if record is None:
        raise CountDecodingError("count iter", "count query returned no rows")

    keys = list(record.keys()) if hasattr(record, "keys") else []
    if "total" not in keys:
        raise CountDecodingError("count", "count column missing")

    total = record["total"]
    if isinstance(total, bool):
        raise CountDecodingError("count", "unexpected count type bool")
    if isinstance(total, int):
        return total
    if isinstance(total, float):
        return int(total)
    if isinstance(total, Decimal) and total == total.to_integral_value():
        return int(total)
    raise CountDecodingError("count", f"unexpected count type {type(total).__name__}")


async def fetch_count(executor: QueryExecutor, query: str, deadline: Deadline) -> int:
    """SELECT COUNT(*) over the configured query, independent of paging."""
    sql = build_count_sql(query)
    total = await executor.fetch(sql, deadline, read_total, operation="count query")
    logger.info(f"Count query returned {total}")
    return total
