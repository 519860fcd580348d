from dataclasses import dataclass
from typing import Optional


# -----------------------------------------------------------------------------
# LIMIT REWRITER MODULE
# Purpose: guarantee every executed query carries exactly one top-level
# LIMIT no larger than the configured maximum, touching nothing else.
# -----------------------------------------------------------------------------

LIMIT_KEYWORD = "LIMIT"
_KEYWORD_BOUNDARY = "();"


@dataclass(frozen=True)
class LimitClause:
    """Location of a top-level LIMIT clause inside a query string."""

    start: int  # index of the "L" of LIMIT
    value_start: int  # first character of the bound
    end: int  # one past the last character of the bound
    value: Optional[int]  # None means LIMIT ALL (unbounded)


def strip_terminator(query: str) -> str:
    """Trim whitespace and a single trailing semicolon."""
    stripped = query.strip()
    if stripped.endswith(";"):
        stripped = stripped[:-1].rstrip()
    return stripped


def _keyword_boundary_before(query: str, index: int) -> bool:
    if index == 0:
        return True
    before = query[index - 1]
    return before.isspace() or before in _KEYWORD_BOUNDARY


def _read_bound(query: str, index: int):
    """
    Parse the bound that follows LIMIT at `index`.

    Returns (value_start, end, value) or None when no bound follows.
    """
    length = len(query)
    j = index
    while j < length and query[j].isspace():
        j += 1

    value_start = j
    while j < length and query[j] in "0123456789":
        j += 1
    if j > value_start:
        return value_start, j, int(query[value_start:j])

    # LIMIT ALL, as long as ALL is a whole word
    if query[value_start:value_start + 3].upper() == "ALL":
        after = value_start + 3
        if after == length or not (query[after].isalnum() or query[after] == "_"):
            return value_start, after, None

    return None


def find_limit_clause(query: str) -> Optional[LimitClause]:
    """
    Find the first LIMIT clause that belongs to the outermost statement.

    The scan tracks two pieces of quote state (single-quoted literal,
    double-quoted identifier) and the parenthesis depth. Keywords are only
    recognised outside quotes and at depth 0, so neither
    `WHERE name = 'LIMIT 50'` nor `FROM (SELECT ... LIMIT 5) sub` count.
    """
    in_single_quote = False
    in_double_quote = False
    depth = 0
    length = len(query)

    for i, char in enumerate(query):
        prev_char = query[i - 1] if i > 0 else ""

        if char == "'" and not in_double_quote and prev_char != "\\":
            in_single_quote = not in_single_quote
            continue
        if char == '"' and not in_single_quote and prev_char != "\\":
            in_double_quote = not in_double_quote
            continue
        if in_single_quote or in_double_quote:
            continue

        if char == "(":
            depth += 1
            continue
        if char == ")":
            depth = max(depth - 1, 0)
            continue
        if depth:
            continue

        if (
            i + 5 <= length
            and query[i:i + 5].upper() == LIMIT_KEYWORD
            and _keyword_boundary_before(query, i)
        ):
            bound = _read_bound(query, i + 5)
            if bound is not None:
                value_start, end, value = bound
                return LimitClause(
                    start=i, value_start=value_start, end=end, value=value
                )

    return None


def ensure_limit(query: str, max_rows: int) -> str:
    """
    Return `query` with a top-level LIMIT no larger than `max_rows`.

    Expects a validated query with the trailing semicolon already removed.

    - LIMIT above max_rows (or LIMIT ALL): the clause becomes "LIMIT <max_rows>"
    - LIMIT within max_rows: returned unchanged
    - no LIMIT: " LIMIT <max_rows>" is appended

    Example:
        ensure_limit("SELECT * FROM pain_points LIMIT 5000", 100)
        -> "SELECT * FROM pain_points LIMIT 100"
    """
    clause = find_limit_clause(query)

    if clause is None:
        return f"{query} {LIMIT_KEYWORD} {max_rows}"

    if clause.value is None or clause.value > max_rows:
        return f"{query[: clause.start]}{LIMIT_KEYWORD} {max_rows}{query[clause.end :]}"

    return query
