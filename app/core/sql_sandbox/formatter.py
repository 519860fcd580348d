import json
from decimal import Decimal
from typing import Any

from app.core import schemas

ERROR_MARKER = "**Query Error:**"
NO_RESULTS = "No results found."
NULL_TEXT = "NULL"
MAX_CELL_LENGTH = 100


def format_value(value: Any) -> str:
    """Render one cell for the markdown table."""
    if value is None:
        return NULL_TEXT
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)[:MAX_CELL_LENGTH]


def format_results_as_markdown(result: schemas.ExecutionResult) -> str:
    """
    Render a sandbox result for people or for the LLM.

    Failures become a single "**Query Error:** ..." line, an empty result
    becomes "No results found.", anything else a markdown table (columns
    taken from the first row) followed by a row count / timing line.
    """
    if not result.success:
        return f"{ERROR_MARKER} {result.error}"

    if not result.data:
        return NO_RESULTS

    columns = list(result.data[0].keys())

    lines = [
        f"| {' | '.join(columns)} |",
        f"| {' | '.join('---' for _ in columns)} |",
    ]
    for row in result.data:
        values = [format_value(row.get(column)) for column in columns]
        lines.append(f"| {' | '.join(values)} |")

    table = "\n".join(lines)
    return f"{table}\n\n*{result.row_count} rows returned in {result.execution_time_ms}ms*"
