from typing import Annotated, List

from fastapi import APIRouter, Depends, Query

from app.core import models, schemas
from app.core.security import get_current_user, validate_admin_role
from app.core.sql_sandbox.audit import AuditSink, get_audit_log
from app.core.sql_sandbox.formatter import format_results_as_markdown
from app.core.sql_sandbox.sandbox import SQLSandbox, get_sql_sandbox

router = APIRouter(prefix="/sql", tags=["SQL Sandbox"])

user_dep = Annotated[models.User, Depends(get_current_user)]
sandbox_dep = Annotated[SQLSandbox, Depends(get_sql_sandbox)]


@router.post("/execute", response_model=schemas.ExecutionResult)
async def execute_sql(
    payload: schemas.SqlQueryRequest, current_user: user_dep, sandbox: sandbox_dep
):
    """
    Run a read-only query through the sandbox.
    Rejections, timeouts and database errors come back as success=false, not as HTTP errors.
    """
    return await sandbox.execute(payload.query, user_id=str(current_user.id))


@router.post("/execute/markdown", response_model=schemas.FormattedExecutionResult)
async def execute_sql_markdown(
    payload: schemas.SqlQueryRequest, current_user: user_dep, sandbox: sandbox_dep
):
    """Same as /execute, plus the result rendered as a markdown table."""
    result = await sandbox.execute(payload.query, user_id=str(current_user.id))
    return schemas.FormattedExecutionResult(
        result=result, formatted=format_results_as_markdown(result)
    )


@router.get("/audit", response_model=List[schemas.AuditEntry])
async def recent_audit_entries(
    admin: Annotated[models.User, Depends(validate_admin_role)],
    audit_log: Annotated[AuditSink, Depends(get_audit_log)],
    limit: int = Query(default=100, ge=1, le=1000),
):
    """Admin-only view of the most recent sandbox attempts (oldest first)."""
    return audit_log.recent(limit)
