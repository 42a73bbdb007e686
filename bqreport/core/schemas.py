from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =========================
# REPORT
# =========================
class ReportBase(BaseModel):
    # "schema" shadows a BaseModel attribute, so it is aliased
    columns: List[str] = Field(default_factory=list, alias="schema")
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = 0

    model_config = ConfigDict(populate_by_name=True)


class ReportResponse(ReportBase):
    truncated: bool = False
    pages: int = 0
    sql: Optional[str] = None


class PageResponse(ReportBase):
    limit: int
    offset: int
    sql: Optional[str] = None


class CountResponse(BaseModel):
    count: int


class ErrorResponse(BaseModel):
    error: str
