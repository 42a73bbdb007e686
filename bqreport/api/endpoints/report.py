from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from bqreport.core import schemas
from bqreport.core.warehouse.pagination import FetchResult, PageRequest, build_page_sql
from bqreport.core.warehouse.report import ReportService, get_report_service

router = APIRouter(prefix="/report", tags=["Report"])

service_dep = Annotated[ReportService, Depends(get_report_service)]

error_responses = {500: {"model": schemas.ErrorResponse}}


def _show_sql(service: ReportService, include_sql: bool) -> bool:
    return include_sql or service.query_settings.REPORT_INCLUDE_SQL


def _report_response(result: FetchResult, sql: Optional[str]) -> schemas.ReportResponse:
    fields = {
        "schema": result.schema,
        "rows": result.rows,
        "count": result.count,
        "truncated": result.truncated,
        "pages": result.pages,
    }
    # "sql" is left unset (and so omitted) unless asked for
    if sql is not None:
        fields["sql"] = sql
    return schemas.ReportResponse(**fields)


@router.get(
    "",
    response_model=schemas.ReportResponse,
    response_model_exclude_unset=True,
    responses=error_responses,
)
async def get_report(service: service_dep, include_sql: bool = False):
    """
    Return every row of the configured query, fetched page by page,
    with the total from an independent COUNT(*).

    `truncated` is true when the page ceiling stopped the walk early.
    """
    result = await service.fetch_all()
    sql = service.query if _show_sql(service, include_sql) else None
    return _report_response(result, sql)


@router.get(
    "/raw",
    response_model=schemas.ReportResponse,
    response_model_exclude_unset=True,
    responses=error_responses,
)
async def get_raw_report(service: service_dep, include_sql: bool = False):
    """Run the configured query once, without paging."""
    result = await service.fetch_raw()
    sql = service.query if _show_sql(service, include_sql) else None
    return _report_response(result, sql)


@router.get(
    "/page",
    response_model=schemas.PageResponse,
    response_model_exclude_unset=True,
    responses=error_responses,
)
async def get_report_page(
    service: service_dep,
    limit: Annotated[int, Query()] = 100,
    offset: Annotated[int, Query()] = 0,
    include_sql: bool = False,
):
    """
    Return one page of the configured query plus the total row count.
    Out-of-range limit/offset values are clamped, not rejected.
    """
    page = PageRequest.clamped(limit, offset)
    result = await service.fetch_page(page.limit, page.offset)
    fields = {
        "schema": result.schema,
        "rows": result.rows,
        "count": result.count,
        "limit": page.limit,
        "offset": page.offset,
    }
    if _show_sql(service, include_sql):
        fields["sql"] = build_page_sql(
            service.query,
            page.limit,
            page.offset,
            service.query_settings.DASH_ORDER_BY or None,
        )
    return schemas.PageResponse(**fields)


@router.get(
    "/count",
    response_model=schemas.CountResponse,
    responses=error_responses,
)
async def get_report_count(service: service_dep):
    """Return SELECT COUNT(*) over the configured query."""
    return {"count": await service.fetch_count()}
