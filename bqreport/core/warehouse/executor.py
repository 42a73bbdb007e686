import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, TypeVar

from google.api_core.exceptions import GoogleAPICallError
from google.auth.exceptions import GoogleAuthError
from google.cloud import bigquery

from bqreport.core.errors import QueryExecutionError, QueryTimeoutError
from bqreport.core.warehouse.connection import Warehouse

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Network failures from the HTTP transport surface as OSError subclasses
REMOTE_ERRORS = (GoogleAPICallError, GoogleAuthError, OSError)


def clean_sql(sql: str) -> str:
    """Trim surrounding whitespace and one trailing statement terminator."""
    sql = sql.strip()
    if sql.endswith(";"):
        sql = sql[:-1].rstrip()
    return sql


class Deadline:
    """
    Monotonic time budget for a whole request.

    One Deadline is shared by every sub-query of a request, so a slow page
    eats into the budget of the pages after it.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, operation: str):
        if self.expired:
            raise QueryTimeoutError(operation, f"deadline of {self.seconds:g}s exceeded")


class Cursor:
    """
    Forward-only view over one query's rows.

    `field_names` is the ordered column list from the result metadata, or
    None when the warehouse did not report a schema. Errors raised while
    walking the remaining result pages are re-raised as QueryExecutionError.

    Walking the rows downloads further result pages, so the deadline and
    the `stop` event are checked before every record: a timed-out or
    cancelled request stops downloading promptly.
    """

    def __init__(
        self,
        records: Iterable[Any],
        field_names: Optional[List[str]] = None,
        operation: str = "query",
        deadline: Optional[Deadline] = None,
        stop: Optional[threading.Event] = None,
    ):
        self._records = records
        self.field_names = field_names
        self.operation = operation
        self.deadline = deadline
        self.stop = stop

    def _check(self):
        if self.stop is not None and self.stop.is_set():
            raise QueryTimeoutError(f"{self.operation} iter", "request cancelled")
        if self.deadline is not None:
            self.deadline.check(f"{self.operation} iter")

    def __iter__(self) -> Iterator[Any]:
        iterator = iter(self._records)
        while True:
            self._check()
            try:
                record = next(iterator)
            except StopIteration:
                return
            except TimeoutError as error:
                raise QueryTimeoutError(f"{self.operation} iter", str(error)) from error
            except REMOTE_ERRORS as error:
                raise QueryExecutionError(
                    f"{self.operation} iter", str(error), error
                ) from error
            yield record


def _field_names(row_iterator: Any) -> Optional[List[str]]:
    schema = getattr(row_iterator, "schema", None)
    if not schema:
        return None
    return [field.name for field in schema]


class QueryExecutor:
    """Runs standard-SQL statements against BigQuery with a request deadline."""

    def __init__(self, warehouse: Warehouse):
        self.warehouse = warehouse

    def execute(
        self,
        sql: str,
        deadline: Deadline,
        operation: str = "query",
        on_submit: Optional[Callable[[Any], None]] = None,
        stop: Optional[threading.Event] = None,
    ) -> Cursor:
        """
        Submit `sql` and block until the job finishes or the deadline elapses.

        Raises:
            QueryTimeoutError: deadline elapsed before the job completed
            QueryExecutionError: syntax/semantic error, location mismatch,
                auth or network failure
        """
        sql = clean_sql(sql)
        deadline.check(operation)
        logger.debug(f"Running SQL:\n{sql}")

        job_config = bigquery.QueryJobConfig(use_legacy_sql=False)
        job = None
        try:
            job = self.warehouse.client.query(
                sql,
                job_config=job_config,
                location=self.warehouse.location,
                timeout=deadline.remaining(),
                job_retry=None,
            )
            if on_submit is not None:
                on_submit(job)
            row_iterator = job.result(timeout=deadline.remaining())
        except TimeoutError as error:
            if job is not None:
                cancel_job(job)
            raise QueryTimeoutError(
                operation, f"deadline of {deadline.seconds:g}s exceeded"
            ) from error
        except REMOTE_ERRORS as error:
            raise QueryExecutionError(operation, str(error), error) from error

        return Cursor(
            row_iterator, _field_names(row_iterator), operation, deadline, stop
        )

    async def fetch(
        self,
        sql: str,
        deadline: Deadline,
        consume: Callable[[Cursor], T],
        operation: str = "query",
    ) -> T:
        """
        Execute `sql` and hand the cursor to `consume`, off the event loop.

        The whole execute + consume step is bounded by the remaining request
        deadline. On timeout or cancellation the submitted job is cancelled
        in the background and the worker thread stops reading rows.
        """
        deadline.check(operation)
        submitted: Dict[str, Any] = {}
        stop = threading.Event()

        def _work() -> T:
            cursor = self.execute(
                sql,
                deadline,
                operation,
                on_submit=lambda job: submitted.update(job=job),
                stop=stop,
            )
            return consume(cursor)

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(_work), timeout=deadline.remaining()
            )
        except asyncio.TimeoutError as error:
            stop.set()
            _cancel_in_background(submitted.get("job"))
            raise QueryTimeoutError(
                operation, f"deadline of {deadline.seconds:g}s exceeded"
            ) from error
        except asyncio.CancelledError:
            stop.set()
            _cancel_in_background(submitted.get("job"))
            raise


def cancel_job(job: Any):
    """Best-effort job cancellation; the request is already failing."""
    try:
        job.cancel()
    except REMOTE_ERRORS as error:
        logger.warning(f"Failed to cancel BigQuery job: {error}")


def _cancel_in_background(job: Optional[Any]):
    if job is None:
        return
    asyncio.get_running_loop().run_in_executor(None, cancel_job, job)
