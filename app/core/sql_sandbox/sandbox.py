import asyncio
import logging
import time
from typing import Annotated, List, Optional

from fastapi import Depends

from app.core import schemas
from app.core.config import settings
from app.core.database import engine
from app.core.sql_sandbox.audit import AuditSink, build_entry, get_audit_log
from app.core.sql_sandbox.executor import (
    EngineQueryRunner,
    QueryRunner,
    elapsed_ms,
    execute_with_deadline,
)
from app.core.sql_sandbox.limiter import ensure_limit, strip_terminator
from app.core.sql_sandbox.validator import validate_query


# -----------------------------------------------------------------------------
# SANDBOX MODULE - Orchestration
# Purpose: validate -> rewrite -> execute -> audit, for one query at a time.
# Every call records exactly one audit entry before it returns.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Query cancelled"


def _preview(query: str, size: int = 120) -> str:
    flat = " ".join(query.split())
    return flat if len(flat) <= size else flat[:size] + "..."


class SQLSandbox:
    """
    Read-only gate in front of the database.

    Args:
        runner: async callable that runs one SQL string and returns rows
        audit_log: sink that receives one entry per attempt
        max_rows: upper bound enforced through LIMIT
        timeout_ms: wall-clock deadline for the database call

    Example:
        sandbox = SQLSandbox(EngineQueryRunner(engine), get_audit_log())
        result = await sandbox.execute("SELECT * FROM pain_points", user_id="7")
    """

    def __init__(
        self,
        runner: QueryRunner,
        audit_log: AuditSink,
        max_rows: int = settings.SQL_MAX_ROWS,
        timeout_ms: int = settings.SQL_TIMEOUT_MS,
    ):
        if max_rows <= 0:
            raise ValueError("max_rows must be positive")
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        self.runner = runner
        self.audit_log = audit_log
        self.max_rows = max_rows
        self.timeout_ms = timeout_ms

    async def execute(
        self, query: str, user_id: Optional[str] = None
    ) -> schemas.ExecutionResult:
        started_at = time.perf_counter()

        verdict = validate_query(query)
        if not verdict.valid:
            result = schemas.ExecutionResult(
                success=False,
                error=verdict.reason,
                error_kind=schemas.ErrorKind.VALIDATION,
                execution_time_ms=elapsed_ms(started_at),
                query=query,
            )
            logger.warning(
                f"[User {user_id}] rejected query ({verdict.reason}): {_preview(query)}"
            )
            self.audit_log.record(build_entry(query, result, user_id))
            return result

        limited_query = ensure_limit(strip_terminator(query), self.max_rows)

        try:
            result = await execute_with_deadline(
                self.runner,
                limited_query,
                timeout_ms=self.timeout_ms,
                started_at=started_at,
                original_query=query,
            )
        except asyncio.CancelledError:
            cancelled = schemas.ExecutionResult(
                success=False,
                error=CANCELLED_MESSAGE,
                execution_time_ms=elapsed_ms(started_at),
                query=query,
            )
            logger.warning(f"[User {user_id}] query cancelled: {_preview(query)}")
            self.audit_log.record(
                build_entry(query, cancelled, user_id, executed_query=limited_query)
            )
            raise

        if result.success:
            logger.info(
                f"[User {user_id}] {result.row_count} rows in "
                f"{result.execution_time_ms}ms: {_preview(limited_query)}"
            )
        elif result.error_kind == schemas.ErrorKind.TIMEOUT:
            logger.warning(
                f"[User {user_id}] query timed out after {self.timeout_ms}ms: "
                f"{_preview(limited_query)}"
            )
        else:
            logger.error(
                f"[User {user_id}] query failed: {result.error} | {_preview(limited_query)}"
            )

        self.audit_log.record(
            build_entry(query, result, user_id, executed_query=limited_query)
        )
        return result

    def recent_audit(self, n: int = 100) -> List[schemas.AuditEntry]:
        return self.audit_log.recent(n)


# =========================
# FastAPI dependencies
# =========================
def get_query_runner() -> QueryRunner:
    return EngineQueryRunner(engine, statement_timeout_ms=settings.SQL_TIMEOUT_MS)


def get_sql_sandbox(
    runner: Annotated[QueryRunner, Depends(get_query_runner)],
    audit_log: Annotated[AuditSink, Depends(get_audit_log)],
) -> SQLSandbox:
    return SQLSandbox(
        runner,
        audit_log,
        max_rows=settings.SQL_MAX_ROWS,
        timeout_ms=settings.SQL_TIMEOUT_MS,
    )
