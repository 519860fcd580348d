import asyncio
import time

import pytest

from app.core import schemas
from app.core.sql_sandbox.audit import InMemoryAuditLog
from app.core.sql_sandbox.executor import EngineQueryRunner, TIMEOUT_MESSAGE
from app.core.sql_sandbox.sandbox import SQLSandbox


class RecordingRunner:
    """Fake database capability that remembers what it was asked to run."""

    def __init__(self, rows=None, delay: float = 0, error: Exception = None):
        self.rows = rows or []
        self.delay = delay
        self.error = error
        self.calls = []

    async def __call__(self, sql):
        self.calls.append(sql)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.rows


class StubbornRunner:
    """Fake database call that keeps working for `linger` seconds once cancelled."""

    def __init__(self, linger: float):
        self.linger = linger
        self.finished = asyncio.Event()

    async def __call__(self, sql):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            await asyncio.sleep(self.linger)
            raise
        finally:
            self.finished.set()
        return []


@pytest.mark.asyncio
async def test_rejected_query_never_reaches_the_database():
    runner = RecordingRunner()
    log = InMemoryAuditLog(10)
    sandbox = SQLSandbox(runner, log, max_rows=100, timeout_ms=1000)

    result = await sandbox.execute("SELECT 1; DROP TABLE users", user_id="3")

    assert result.success is False
    assert result.error_kind == schemas.ErrorKind.VALIDATION
    assert result.error == "Forbidden keyword detected: DROP"
    assert result.query == "SELECT 1; DROP TABLE users"
    assert runner.calls == []

    [entry] = log.recent()
    assert entry.success is False
    assert entry.user_id == "3"
    assert entry.error == result.error
    assert entry.executed_query is None


@pytest.mark.asyncio
async def test_runner_receives_limited_query():
    runner = RecordingRunner(rows=[{"id": 1}, {"id": 2}])
    sandbox = SQLSandbox(runner, InMemoryAuditLog(10), max_rows=25, timeout_ms=1000)

    result = await sandbox.execute("  SELECT id FROM companies;  ")

    assert runner.calls == ["SELECT id FROM companies LIMIT 25"]
    assert result.success is True
    assert result.data == [{"id": 1}, {"id": 2}]
    assert result.row_count == 2
    assert result.query == "SELECT id FROM companies LIMIT 25"
    assert result.error is None


@pytest.mark.asyncio
async def test_timeout_is_classified_and_bounded():
    runner = RecordingRunner(delay=5)
    log = InMemoryAuditLog(10)
    sandbox = SQLSandbox(runner, log, max_rows=100, timeout_ms=100)

    started = time.perf_counter()
    result = await sandbox.execute("SELECT * FROM pain_points", user_id="9")
    waited = time.perf_counter() - started

    assert result.success is False
    assert result.error_kind == schemas.ErrorKind.TIMEOUT
    assert result.error == TIMEOUT_MESSAGE
    assert result.query == "SELECT * FROM pain_points"
    assert 90 <= result.execution_time_ms < 1000
    assert waited < 1.0

    [entry] = log.recent()
    assert entry.error_kind == schemas.ErrorKind.TIMEOUT
    assert entry.executed_query == "SELECT * FROM pain_points LIMIT 100"


@pytest.mark.asyncio
async def test_timeout_returns_without_waiting_for_slow_cancellation():
    runner = StubbornRunner(linger=1.5)
    log = InMemoryAuditLog(10)
    sandbox = SQLSandbox(runner, log, max_rows=100, timeout_ms=100)

    started = time.perf_counter()
    result = await sandbox.execute("SELECT 1")
    waited = time.perf_counter() - started

    assert result.error_kind == schemas.ErrorKind.TIMEOUT
    assert waited < 0.1 + 0.4
    assert not runner.finished.is_set()
    assert len(log) == 1

    # let the abandoned call wind down before the loop closes
    await asyncio.wait_for(runner.finished.wait(), timeout=5)


@pytest.mark.asyncio
async def test_caller_cancel_does_not_wait_for_slow_cancellation():
    runner = StubbornRunner(linger=1.5)
    log = InMemoryAuditLog(10)
    sandbox = SQLSandbox(runner, log, max_rows=100, timeout_ms=10000)

    task = asyncio.create_task(sandbox.execute("SELECT 1", user_id="4"))
    await asyncio.sleep(0.05)
    started = time.perf_counter()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert time.perf_counter() - started < 0.4
    assert log.recent()[-1].error == "Query cancelled"

    await asyncio.wait_for(runner.finished.wait(), timeout=5)


@pytest.mark.asyncio
async def test_database_error_message_passes_through():
    runner = RecordingRunner(error=RuntimeError("connection refused"))
    log = InMemoryAuditLog(10)
    sandbox = SQLSandbox(runner, log, max_rows=100, timeout_ms=1000)

    result = await sandbox.execute("SELECT * FROM pain_points")

    assert result.success is False
    assert result.error_kind == schemas.ErrorKind.DATABASE
    assert result.error == "connection refused"
    assert len(log) == 1


@pytest.mark.asyncio
async def test_failure_does_not_block_next_query():
    runner = RecordingRunner(error=RuntimeError("boom"))
    log = InMemoryAuditLog(10)
    sandbox = SQLSandbox(runner, log, max_rows=100, timeout_ms=1000)

    await sandbox.execute("SELECT 1")
    runner.error = None
    runner.rows = [{"x": 1}]
    result = await sandbox.execute("SELECT 1")

    assert result.success is True
    assert [e.success for e in log.recent()] == [False, True]


@pytest.mark.asyncio
async def test_cancelled_request_is_audited_and_reraised():
    runner = RecordingRunner(delay=5)
    log = InMemoryAuditLog(10)
    sandbox = SQLSandbox(runner, log, max_rows=100, timeout_ms=10000)

    task = asyncio.create_task(sandbox.execute("SELECT 1", user_id="4"))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    [entry] = log.recent()
    assert entry.success is False
    assert entry.error == "Query cancelled"
    assert entry.user_id == "4"


@pytest.mark.asyncio
async def test_every_outcome_writes_exactly_one_entry():
    log = InMemoryAuditLog(50)
    ok = SQLSandbox(RecordingRunner(rows=[{"a": 1}]), log, timeout_ms=1000)
    slow = SQLSandbox(RecordingRunner(delay=1), log, timeout_ms=20)
    broken = SQLSandbox(RecordingRunner(error=RuntimeError("x")), log, timeout_ms=1000)

    await ok.execute("DELETE FROM companies")
    await ok.execute("SELECT 1")
    await slow.execute("SELECT 1")
    await broken.execute("SELECT 1")

    kinds = [e.error_kind for e in log.recent()]
    assert kinds == [
        schemas.ErrorKind.VALIDATION,
        None,
        schemas.ErrorKind.TIMEOUT,
        schemas.ErrorKind.DATABASE,
    ]


def test_invalid_configuration_is_refused():
    with pytest.raises(ValueError):
        SQLSandbox(RecordingRunner(), InMemoryAuditLog(10), max_rows=0)
    with pytest.raises(ValueError):
        SQLSandbox(RecordingRunner(), InMemoryAuditLog(10), timeout_ms=0)


# =========================
# Against a real (SQLite) database
# =========================
@pytest.mark.asyncio
async def test_unbounded_select_returns_max_rows(sandbox, seeded_pain_points):
    """150-row table, max 100 -> exactly 100 rows"""
    result = await sandbox.execute("SELECT * FROM pain_points", user_id="1")

    assert result.success is True
    assert result.row_count == 100
    assert len(result.data) == 100
    assert result.query == "SELECT * FROM pain_points LIMIT 100"
    assert "statement" in result.data[0]


@pytest.mark.asyncio
async def test_large_limit_is_capped(sandbox, seeded_pain_points):
    result = await sandbox.execute(
        "SELECT id FROM pain_points ORDER BY id LIMIT 5000"
    )
    assert result.row_count == 100
    assert result.query == "SELECT id FROM pain_points ORDER BY id LIMIT 100"


@pytest.mark.asyncio
async def test_small_limit_is_respected(sandbox, seeded_pain_points):
    result = await sandbox.execute(
        "SELECT statement FROM pain_points WHERE risk_level = 'High' LIMIT 7;"
    )
    assert result.success is True
    assert result.row_count == 7


@pytest.mark.asyncio
async def test_aggregate_query(sandbox, seeded_pain_points):
    result = await sandbox.execute(
        "WITH per_risk AS (SELECT risk_level, COUNT(*) AS n FROM pain_points GROUP BY risk_level) "
        "SELECT * FROM per_risk ORDER BY risk_level"
    )
    assert result.success is True
    assert result.data == [{"risk_level": "High", "n": 50}, {"risk_level": "Low", "n": 100}]


@pytest.mark.asyncio
async def test_unknown_table_is_a_database_error(sandbox, audit_log):
    result = await sandbox.execute("SELECT * FROM no_such_table")

    assert result.success is False
    assert result.error_kind == schemas.ErrorKind.DATABASE
    assert "no such table" in result.error
    assert audit_log.recent()[-1].error == result.error


@pytest.mark.asyncio
async def test_slow_database_query_times_out_on_schedule(test_engine):
    """SQLite cannot stop mid-statement, the caller still gets control back"""
    log = InMemoryAuditLog(10)
    sandbox = SQLSandbox(
        EngineQueryRunner(test_engine), log, max_rows=100, timeout_ms=200
    )
    slow_query = (
        "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c WHERE x < 30000000) "
        "SELECT COUNT(*) AS n FROM c"
    )

    started = time.perf_counter()
    result = await sandbox.execute(slow_query)
    waited = time.perf_counter() - started

    assert result.success is False
    assert result.error_kind == schemas.ErrorKind.TIMEOUT
    assert result.query == slow_query
    assert waited < 0.2 + 0.5
    assert log.recent()[-1].error_kind == schemas.ErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_engine_runner_never_commits(test_engine, sandbox, seeded_pain_points):
    """The runner rolls back, so even a write handed to it directly is discarded"""
    runner = EngineQueryRunner(test_engine)

    rows = await runner("INSERT INTO companies (name) VALUES ('Sneaky Co')")
    assert rows == []

    result = await sandbox.execute("SELECT COUNT(*) AS n FROM companies")
    assert result.data == [{"n": 1}]
