import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core import schemas


# -----------------------------------------------------------------------------
# EXECUTOR MODULE
# Purpose: run an already validated + limited query against the database,
# racing it against a wall-clock deadline, and classify what happened.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Query timeout exceeded"
UNKNOWN_ERROR_MESSAGE = "Unknown error occurred"

# SQLSTATE query_canceled, what PostgreSQL reports when statement_timeout fires
_PG_QUERY_CANCELED = "57014"

Row = Dict[str, Any]
QueryRunner = Callable[[str], Awaitable[List[Row]]]


class EngineQueryRunner:
    """
    Run raw SQL on a fresh connection from an AsyncEngine.

    The text goes through `exec_driver_sql`, so nothing in it is treated as a
    bind parameter. On PostgreSQL the transaction is opened READ ONLY and the
    server-side statement_timeout is set to the sandbox deadline, so a timed
    out statement is aborted by the server too. Nothing is ever committed.
    """

    def __init__(self, engine: AsyncEngine, statement_timeout_ms: Optional[int] = None):
        self.engine = engine
        self.statement_timeout_ms = statement_timeout_ms

    async def __call__(self, sql: str) -> List[Row]:
        async with self.engine.connect() as conn:
            if conn.dialect.name == "postgresql":
                await conn.exec_driver_sql("SET TRANSACTION READ ONLY")
                if self.statement_timeout_ms:
                    await conn.exec_driver_sql(
                        f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}"
                    )

            result = await conn.exec_driver_sql(sql)
            rows = (
                [dict(row) for row in result.mappings().all()]
                if result.returns_rows
                else []
            )
            await conn.rollback()
        return rows


def elapsed_ms(started_at: float) -> int:
    """Milliseconds since `started_at` (a time.perf_counter() value)."""
    return int(round((time.perf_counter() - started_at) * 1000))


def describe_error(error: BaseException) -> str:
    """Driver message for SQLAlchemy-wrapped errors, str(error) otherwise."""
    if isinstance(error, DBAPIError) and error.orig is not None:
        message = str(error.orig)
    else:
        message = str(error)
    return message or UNKNOWN_ERROR_MESSAGE


def is_server_timeout(error: BaseException) -> bool:
    if not isinstance(error, DBAPIError):
        return False
    return getattr(error.orig, "sqlstate", None) == _PG_QUERY_CANCELED


def _collect_abandoned(task: "asyncio.Future") -> None:
    # Read the outcome so a late failure is logged instead of "never retrieved"
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Abandoned query finished with: {describe_error(error)}")


def _abandon(task: "asyncio.Future") -> None:
    """Cancel a runner task without waiting for it to wind down."""
    task.cancel()
    task.add_done_callback(_collect_abandoned)


async def execute_with_deadline(
    runner: QueryRunner,
    query: str,
    timeout_ms: int,
    started_at: float,
    original_query: Optional[str] = None,
) -> schemas.ExecutionResult:
    """
    Race `runner(query)` against a `timeout_ms` timer.

    - runner finishes first: success with rows, row count and the executed query
    - timer fires first: failure, error_kind=timeout
    - runner raises: failure, error_kind=database, driver message unchanged

    On timeout the runner task is cancelled but not awaited: a driver that is
    slow to give up (a connection closing behind a running statement) keeps
    going in the background while control returns to the caller right away.

    Failures report `original_query` (what the caller sent) as `query`.
    Elapsed time is measured from `started_at`, not from when the database
    call began.
    """
    failed_query = original_query if original_query is not None else query

    task = asyncio.ensure_future(runner(query))
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    except asyncio.CancelledError:
        _abandon(task)
        raise

    if task not in done:
        _abandon(task)
        return schemas.ExecutionResult(
            success=False,
            error=TIMEOUT_MESSAGE,
            error_kind=schemas.ErrorKind.TIMEOUT,
            execution_time_ms=elapsed_ms(started_at),
            query=failed_query,
        )

    try:
        rows = task.result()
    except Exception as error:
        kind = (
            schemas.ErrorKind.TIMEOUT
            if is_server_timeout(error)
            else schemas.ErrorKind.DATABASE
        )
        return schemas.ExecutionResult(
            success=False,
            error=TIMEOUT_MESSAGE if kind == schemas.ErrorKind.TIMEOUT else describe_error(error),
            error_kind=kind,
            execution_time_ms=elapsed_ms(started_at),
            query=failed_query,
        )

    rows = list(rows or [])
    return schemas.ExecutionResult(
        success=True,
        data=rows,
        row_count=len(rows),
        execution_time_ms=elapsed_ms(started_at),
        query=query,
    )
