import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from bqreport.core.config import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, FetchConfig
from bqreport.core.warehouse.executor import Deadline, QueryExecutor, clean_sql
from bqreport.core.warehouse.normalizer import NormalizedRows, Row, normalize

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# PAGINATION MODULE
# Purpose: materialize a full query result as successive LIMIT/OFFSET pages.
# Pages are fetched one at a time, in increasing offset order, so memory and
# request size stay bounded per sub-query.
# -----------------------------------------------------------------------------


class PageState(Enum):
    """Pagination driver state."""

    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class PageRequest:
    limit: int
    offset: int = 0

    @classmethod
    def clamped(cls, limit: Optional[int], offset: Optional[int] = 0) -> "PageRequest":
        """
        Clamp instead of rejecting.

        Examples:
            clamped(0, -5)     → PageRequest(limit=100, offset=0)
            clamped(50000, 10) → PageRequest(limit=10000, offset=10)
        """
        if not limit or limit <= 0:
            limit = DEFAULT_PAGE_LIMIT
        if limit > MAX_PAGE_LIMIT:
            limit = MAX_PAGE_LIMIT
        if not offset or offset < 0:
            offset = 0
        return cls(limit=limit, offset=offset)


@dataclass
class FetchResult:
    rows: List[Row] = field(default_factory=list)
    schema: List[str] = field(default_factory=list)
    count: Optional[int] = None
    pages: int = 0
    truncated: bool = False


def build_page_sql(
    query: str, limit: int, offset: int, order_by: Optional[str] = None
) -> str:
    sql = f"SELECT * FROM ({clean_sql(query)})"
    if order_by:
        sql += f" ORDER BY {order_by}"
    return f"{sql} LIMIT {limit} OFFSET {offset}"


async def fetch_page(
    executor: QueryExecutor,
    query: str,
    page: PageRequest,
    deadline: Deadline,
    order_by: Optional[str] = None,
) -> NormalizedRows:
    """Run one LIMIT/OFFSET sub-query over `query` and normalize its rows."""
    sql = build_page_sql(query, page.limit, page.offset, order_by)
    logger.debug(f"Fetching page limit={page.limit} offset={page.offset}")
    return await executor.fetch(sql, deadline, normalize, operation="paged query")


class PaginationDriver:
    """
    Walks a query page by page until an empty page or the page ceiling.

    States:
        RUNNING(offset) → RUNNING(offset + rows on page) → ... → DONE | FAILED

    Hitting the ceiling while the last page was still full ends in DONE
    with `truncated=True`. Any failed page ends in FAILED and the error
    propagates, so rows from earlier pages are never returned on their own.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        config: FetchConfig,
        order_by: Optional[str] = None,
    ):
        self.executor = executor
        self.config = config
        self.order_by = order_by or None
        self.state = PageState.DONE
        self.offset = 0

    async def fetch_all(self, query: str, deadline: Deadline) -> FetchResult:
        self.state = PageState.RUNNING
        self.offset = 0
        result = FetchResult()
        last_page_full = False

        try:
            while result.pages < self.config.max_pages:
                page = await fetch_page(
                    self.executor,
                    query,
                    PageRequest(self.config.page_size, self.offset),
                    deadline,
                    self.order_by,
                )
                result.pages += 1

                if not page.rows:
                    break

                # Schema is fixed by the first non-empty page
                if not result.rows:
                    result.schema = list(page.schema)

                result.rows.extend(page.rows)
                self.offset += len(page.rows)
                last_page_full = len(page.rows) >= self.config.page_size
                logger.info(
                    f"Page {result.pages}: {len(page.rows)} rows (total {len(result.rows)})"
                )
            else:
                # A short last page means the result was already exhausted
                result.truncated = last_page_full
            if result.truncated:
                logger.warning(
                    f"Stopped after {self.config.max_pages} pages "
                    f"({len(result.rows)} rows); result is truncated, raise MAX_PAGES"
                )

            if result.pages > 1 and self.order_by is None:
                logger.warning(
                    "Multi-page result without DASH_ORDER_BY; row order across "
                    "pages is not guaranteed and rows may repeat or go missing"
                )
            self.state = PageState.DONE
        finally:
            if self.state is PageState.RUNNING:
                self.state = PageState.FAILED

        return result
