import re
import time
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from bqreport.main import app
from bqreport.core.config import QuerySettings, Settings, get_query_settings, get_settings
from bqreport.core.warehouse.connection import Warehouse, get_warehouse
from bqreport.core.warehouse.executor import QueryExecutor

PAGE_RE = re.compile(r"LIMIT (\d+) OFFSET (\d+)\s*$")
COUNT_RE = re.compile(r"^SELECT COUNT\(\*\) AS total FROM \(")


class FakeRowIterator:
    """Stands in for google.cloud.bigquery.table.RowIterator."""

    def __init__(self, rows, field_names=None, error=None, row_delay=0.0, on_row=None):
        self._rows = rows
        self._error = error
        self._row_delay = row_delay
        self._on_row = on_row
        self.schema = [SimpleNamespace(name=name) for name in field_names or []]

    def __iter__(self):
        for row in self._rows:
            if self._row_delay:
                time.sleep(self._row_delay)
            if self._on_row is not None:
                self._on_row()
            yield row
        if self._error is not None:
            raise self._error


class FakeJob:
    def __init__(self, result=None, error=None, delay=0.0):
        self._result = result
        self._error = error
        self._delay = delay
        self.cancelled = False

    def result(self, timeout=None):
        if self._delay:
            time.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._result

    def cancel(self):
        self.cancelled = True
        return True


class FakeBigQueryClient:
    """
    In-memory warehouse that understands the three query shapes the
    service sends: the base query, LIMIT/OFFSET pages and COUNT(*).
    """

    def __init__(
        self,
        rows=None,
        field_names=None,
        page_errors=None,
        count_value=None,
        count_error=None,
        error=None,
        delay=0.0,
        row_delay=0.0,
    ):
        self.rows = list(rows or [])
        self.field_names = field_names
        self.page_errors = page_errors or {}
        self.count_value = count_value
        self.count_error = count_error
        self.error = error
        self.delay = delay
        self.row_delay = row_delay
        self.rows_read = 0
        self.queries = []
        self.calls = []
        self.jobs = []
        self.closed = False

    @property
    def page_queries(self):
        return [sql for sql in self.queries if PAGE_RE.search(sql)]

    def query(self, sql, job_config=None, location=None, timeout=None, job_retry=None):
        self.queries.append(sql)
        self.calls.append(
            {"sql": sql, "job_config": job_config, "location": location, "timeout": timeout}
        )
        job = self._job_for(sql)
        self.jobs.append(job)
        return job

    def _job_for(self, sql):
        if self.error is not None:
            return FakeJob(error=self.error, delay=self.delay)

        if COUNT_RE.search(sql):
            if self.count_error is not None:
                return FakeJob(error=self.count_error)
            total = len(self.rows) if self.count_value is None else self.count_value
            return FakeJob(result=FakeRowIterator([{"total": total}], ["total"]))

        match = PAGE_RE.search(sql)
        if match:
            limit, offset = int(match.group(1)), int(match.group(2))
            if offset in self.page_errors:
                return FakeJob(error=self.page_errors[offset])
            page = self.rows[offset : offset + limit]
            return FakeJob(result=self._iterator(page), delay=self.delay)

        return FakeJob(result=self._iterator(self.rows), delay=self.delay)

    def _iterator(self, rows):
        return FakeRowIterator(
            rows, self.field_names, row_delay=self.row_delay, on_row=self._count_row
        )

    def _count_row(self):
        self.rows_read += 1

    def close(self):
        self.closed = True


@pytest.fixture
def make_executor():
    def _make(location=None, **kwargs):
        fake = FakeBigQueryClient(**kwargs)
        return QueryExecutor(Warehouse(client=fake, location=location)), fake

    return _make


@pytest.fixture
def fake_bigquery():
    return FakeBigQueryClient(
        rows=[{"id": i, "name": f"row {i}"} for i in range(5)],
        field_names=["id", "name"],
    )


@pytest.fixture
def query_settings():
    return QuerySettings(DASH_QUERY="SELECT id, name FROM dataset.table;")


@pytest.fixture
def test_settings():
    return Settings(PAGE_SIZE=2, MAX_PAGES=10, RAW_TIMEOUT_SECONDS=5, FULL_TIMEOUT_SECONDS=5)


# Client
@pytest_asyncio.fixture(scope="function")
async def client(fake_bigquery, query_settings, test_settings):
    app.dependency_overrides[get_warehouse] = lambda: Warehouse(
        client=fake_bigquery, location="EU"
    )
    app.dependency_overrides[get_query_settings] = lambda: query_settings
    app.dependency_overrides[get_settings] = lambda: test_settings

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
