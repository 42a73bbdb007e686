from typing import Optional


# =========================
# Base
# =========================
class ReportError(Exception):
    """
    Base class for every failure the report service surfaces.

    `operation` names the step that failed (e.g. "paged query", "count iter")
    and is prefixed to the message so the JSON error is diagnosable as-is.
    """

    def __init__(self, operation: str, message: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.message = message
        self.cause = cause
        super().__init__(f"{operation} error: {message}")


# =========================
# Startup / configuration
# =========================
class ConfigurationError(ReportError):
    """Missing project id, missing query text."""


class WarehouseConnectionError(ReportError):
    """Credential or client construction failure."""

    def __init__(self, source: str, cause: BaseException):
        self.source = source
        super().__init__(f"bq client ({source})", str(cause), cause)


# =========================
# Per-request
# =========================
class QueryExecutionError(ReportError):
    """Malformed SQL, location mismatch, network or auth failure."""


class QueryTimeoutError(ReportError):
    """The request deadline elapsed or the request was cancelled."""


class RowDecodingError(ReportError):
    """A cursor record could not be mapped to column names."""


class CountDecodingError(ReportError):
    """The COUNT(*) result did not have the expected shape."""
