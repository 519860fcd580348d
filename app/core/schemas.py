from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, EmailStr


# =========================
# Enums
# =========================
class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class ErrorKind(str, Enum):
    """Why a sandboxed query did not succeed."""

    VALIDATION = "validation"
    TIMEOUT = "timeout"
    DATABASE = "database"


# =========================
# AUTH
# =========================
class UserLogin(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# =========================
# SQL SANDBOX
# =========================
class SqlQueryRequest(BaseModel):
    query: str = Field(min_length=1, max_length=20000)


class ExecutionResult(BaseModel):
    """
    Outcome of one sandboxed query.

    On success `data`, `row_count` and the rewritten `query` are set.
    On failure `error` and `error_kind` are set and `query` is the text
    the caller submitted.
    """

    success: bool
    data: Optional[List[Dict[str, Any]]] = None
    row_count: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    execution_time_ms: int = 0
    query: str


class FormattedExecutionResult(BaseModel):
    result: ExecutionResult
    formatted: str


class AuditEntry(BaseModel):
    """One sandbox attempt. Immutable once recorded."""

    timestamp: datetime
    query: str
    user_id: Optional[str] = None
    success: bool
    row_count: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    execution_time_ms: int
    # Post-rewrite text, only when the query got past validation
    executed_query: Optional[str] = None

    model_config = ConfigDict(frozen=True)


# =========================
# AI / TEXT-TO-SQL
# =========================
class AiQueryRequest(BaseModel):
    question: str = Field(min_length=1, max_length=2000)


class TextToSqlResult(BaseModel):
    success: bool
    query: Optional[str] = None
    results: Optional[ExecutionResult] = None
    formatted_results: Optional[str] = None
    error: Optional[str] = None
