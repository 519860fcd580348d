import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple


# -----------------------------------------------------------------------------
# VALIDATOR MODULE
# Purpose: decide whether raw SQL text may be sent to the database at all.
# Shape-based allowlist only: it does not parse SQL. Pair it with a read-only
# database role / transaction.
# -----------------------------------------------------------------------------


# Order matters: the first hit is the one named in the rejection reason
FORBIDDEN_KEYWORDS: Tuple[str, ...] = (
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "TRUNCATE",
    "ALTER",
    "CREATE",
    "GRANT",
    "REVOKE",
    "EXEC",
    "EXECUTE",
    "CALL",
    "COPY",
    "VACUUM",
    "REINDEX",
    "CLUSTER",
    "COMMENT",
    "LOCK",
    "SET",
    "RESET",
    "DISCARD",
    "PREPARE",
    "DEALLOCATE",
    "BEGIN",
    "COMMIT",
    "ROLLBACK",
    "SAVEPOINT",
    "RELEASE",
    "LOAD",
    "IMPORT",
    "EXPORT",
    "NOTIFY",
    "LISTEN",
    "UNLISTEN",
)

_KEYWORD_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = tuple(
    (keyword, re.compile(rf"\b{keyword}\b")) for keyword in FORBIDDEN_KEYWORDS
)

# (label, pattern) pairs, label ends up in the rejection reason
FORBIDDEN_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = (
    (
        "chained mutating statement",
        re.compile(
            r";\s*(?:INSERT|UPDATE|DELETE|DROP|TRUNCATE|ALTER|CREATE)", re.IGNORECASE
        ),
    ),
    ("inline comment", re.compile(r"--")),
    ("block comment", re.compile(r"/\*")),
    ("file write", re.compile(r"INTO\s+OUTFILE", re.IGNORECASE)),
    ("file read", re.compile(r"LOAD_FILE", re.IGNORECASE)),
    ("backend sleep", re.compile(r"pg_sleep", re.IGNORECASE)),
    ("backend control", re.compile(r"pg_terminate_backend", re.IGNORECASE)),
    ("backend control", re.compile(r"pg_cancel_backend", re.IGNORECASE)),
    ("credential catalog", re.compile(r"information_schema\.role", re.IGNORECASE)),
    ("credential catalog", re.compile(r"pg_shadow", re.IGNORECASE)),
    ("credential catalog", re.compile(r"pg_authid", re.IGNORECASE)),
)

_LEADING_KEYWORD = re.compile(r"^(?:SELECT|WITH)\b")


@dataclass(frozen=True)
class ValidationVerdict:
    valid: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationVerdict":
        return cls(valid=True)

    @classmethod
    def reject(cls, reason: str) -> "ValidationVerdict":
        return cls(valid=False, reason=reason)


def find_forbidden_keyword(upper_query: str) -> Optional[str]:
    """
    Return the first forbidden keyword appearing as a whole word after the
    leading keyword, or None.

    Word boundaries keep column names like `updated_at` or `offset` legal.
    """
    for keyword, pattern in _KEYWORD_PATTERNS:
        match = pattern.search(upper_query)
        if match and match.start() > 0:
            return keyword
    return None


def find_forbidden_pattern(query: str) -> Optional[str]:
    for label, pattern in FORBIDDEN_PATTERNS:
        if pattern.search(query):
            return label
    return None


def validate_query(query: str) -> ValidationVerdict:
    """
    Classify raw SQL text as permitted or rejected.

    Layers, in order:
    1. Must start with SELECT or WITH
    2. No forbidden keyword anywhere after the leading keyword
    3. No dangerous pattern (comments, chained DML, file/backend calls, credential catalogs)
    4. At most one semicolon

    Pure function: no I/O, never raises for bad SQL.

    Example:
        validate_query("SELECT * FROM pain_points")  -> ValidationVerdict(valid=True)
        validate_query("DROP TABLE users")           -> ValidationVerdict(False, "Only SELECT queries are allowed")
    """
    trimmed_upper = query.strip().upper()

    if not trimmed_upper:
        return ValidationVerdict.reject("Query is empty")

    if not _LEADING_KEYWORD.match(trimmed_upper):
        return ValidationVerdict.reject("Only SELECT queries are allowed")

    keyword = find_forbidden_keyword(trimmed_upper)
    if keyword:
        return ValidationVerdict.reject(f"Forbidden keyword detected: {keyword}")

    label = find_forbidden_pattern(query)
    if label:
        return ValidationVerdict.reject(f"Query contains forbidden pattern: {label}")

    if query.count(";") > 1:
        return ValidationVerdict.reject("Only single statements are allowed")

    return ValidationVerdict.ok()
