import asyncio
import logging
from typing import Annotated

from fastapi import Depends

from bqreport.core.config import (
    FetchConfig,
    QuerySettings,
    Settings,
    get_query_settings,
    get_settings,
)
from bqreport.core.errors import ConfigurationError
from bqreport.core.warehouse.connection import Warehouse, get_warehouse
from bqreport.core.warehouse.count import fetch_count
from bqreport.core.warehouse.executor import Deadline, QueryExecutor, clean_sql
from bqreport.core.warehouse.normalizer import normalize
from bqreport.core.warehouse.pagination import (
    FetchResult,
    PageRequest,
    PaginationDriver,
    fetch_page,
)

logger = logging.getLogger(__name__)


async def gather_or_cancel(*aws):
    """
    Await all of `aws` concurrently. The first failure cancels the others
    and is raised on its own, so no warehouse work outlives the request.
    """
    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(aw) for aw in aws]
    except ExceptionGroup as errors:
        raise errors.exceptions[0]
    return [task.result() for task in tasks]


class ReportService:
    """
    Answers report requests for one configuration snapshot.

    Built per request: the query text comes from a fresh QuerySettings,
    the warehouse handle is the shared one created at startup.
    """

    def __init__(
        self,
        warehouse: Warehouse,
        query_settings: QuerySettings,
        fetch_config: FetchConfig,
        raw_timeout: float = 60.0,
        full_timeout: float = 300.0,
    ):
        self.executor = QueryExecutor(warehouse)
        self.query_settings = query_settings
        self.fetch_config = fetch_config
        self.raw_timeout = raw_timeout
        self.full_timeout = full_timeout

    @property
    def query(self) -> str:
        query = clean_sql(self.query_settings.DASH_QUERY)
        if not query:
            raise ConfigurationError(
                "query", "DASH_QUERY env is empty; set your SELECT statement"
            )
        return query

    async def fetch_all(self) -> FetchResult:
        """
        Full materialization: every page plus an independent COUNT(*).

        Both run under one deadline; either failing cancels the other and
        fails the request.
        """
        query = self.query
        deadline = Deadline(self.full_timeout)
        driver = PaginationDriver(
            self.executor, self.fetch_config, self.query_settings.DASH_ORDER_BY
        )
        logger.info(
            f"Full fetch: page_size={self.fetch_config.page_size} "
            f"max_pages={self.fetch_config.max_pages}"
        )
        result, total = await gather_or_cancel(
            driver.fetch_all(query, deadline),
            fetch_count(self.executor, query, deadline),
        )
        result.count = total
        if result.count != len(result.rows):
            logger.warning(
                f"Row count mismatch: fetched {len(result.rows)}, COUNT(*) says {result.count}"
            )
        return result

    async def fetch_raw(self) -> FetchResult:
        """Run the configured query once, without paging."""
        query = self.query
        deadline = Deadline(self.raw_timeout)
        page = await self.executor.fetch(query, deadline, normalize, operation="query read")
        return FetchResult(rows=page.rows, schema=page.schema, count=len(page.rows), pages=1)

    async def fetch_page(self, limit: int, offset: int) -> FetchResult:
        query = self.query
        page_request = PageRequest.clamped(limit, offset)
        deadline = Deadline(self.raw_timeout)
        page, total = await gather_or_cancel(
            fetch_page(
                self.executor,
                query,
                page_request,
                deadline,
                self.query_settings.DASH_ORDER_BY or None,
            ),
            fetch_count(self.executor, query, deadline),
        )
        return FetchResult(rows=page.rows, schema=page.schema, count=total, pages=1)

    async def fetch_count(self) -> int:
        query = self.query
        return await fetch_count(self.executor, query, Deadline(self.raw_timeout))


def get_report_service(
    warehouse: Annotated[Warehouse, Depends(get_warehouse)],
    query_settings: Annotated[QuerySettings, Depends(get_query_settings)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ReportService:
    return ReportService(
        warehouse=warehouse,
        query_settings=query_settings,
        fetch_config=settings.fetch_config(),
        raw_timeout=settings.RAW_TIMEOUT_SECONDS,
        full_timeout=settings.FULL_TIMEOUT_SECONDS,
    )
