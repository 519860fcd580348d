import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List, Optional, Protocol

from app.core import schemas
from app.core.config import settings


# -----------------------------------------------------------------------------
# AUDIT LOG MODULE
# Purpose: keep a bounded, in-process trail of every sandbox attempt.
# Not durable: entries live as long as the process.
# -----------------------------------------------------------------------------

DEFAULT_RECENT = 100


class AuditSink(Protocol):
    """Anything the sandbox can record attempts into."""

    def record(self, entry: schemas.AuditEntry) -> None: ...

    def recent(self, n: int = DEFAULT_RECENT) -> List[schemas.AuditEntry]: ...


class InMemoryAuditLog:
    """
    Fixed-capacity FIFO of audit entries.

    Appends and evictions happen under one lock, so concurrent writers can
    never push the log past `capacity`. `recent` returns a copy.
    """

    def __init__(self, capacity: int = 1000):
        if capacity <= 0:
            raise ValueError("Audit log capacity must be positive")
        self.capacity = capacity
        self._entries: Deque[schemas.AuditEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def record(self, entry: schemas.AuditEntry) -> None:
        with self._lock:
            # deque(maxlen) drops from the left once full
            self._entries.append(entry)

    def recent(self, n: int = DEFAULT_RECENT) -> List[schemas.AuditEntry]:
        if n <= 0:
            return []
        with self._lock:
            snapshot = list(self._entries)
        return snapshot[-n:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def build_entry(
    query: str,
    result: schemas.ExecutionResult,
    user_id: Optional[str] = None,
    executed_query: Optional[str] = None,
) -> schemas.AuditEntry:
    """Turn a finished sandbox result into an audit entry."""
    return schemas.AuditEntry(
        timestamp=datetime.now(timezone.utc),
        query=query,
        user_id=user_id,
        success=result.success,
        row_count=result.row_count if result.success else None,
        error=result.error,
        error_kind=result.error_kind,
        execution_time_ms=result.execution_time_ms,
        executed_query=executed_query,
    )


_audit_log: Optional[InMemoryAuditLog] = None
_audit_log_lock = threading.Lock()


def get_audit_log() -> InMemoryAuditLog:
    """Process-wide audit log, sized from settings on first use."""
    global _audit_log
    with _audit_log_lock:
        if _audit_log is None:
            _audit_log = InMemoryAuditLog(settings.SQL_AUDIT_CAPACITY)
        return _audit_log
