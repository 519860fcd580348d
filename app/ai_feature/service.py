"""Text-to-SQL assistant.

Flow:
1. Ask the LLM for a SELECT answering the question (schema in the system prompt)
2. Strip markdown fences from the answer
3. Run it through the read-only SQL sandbox
4. On failure, ask once more with the error attached
5. Return the query, the raw result and a markdown rendering
"""
import logging
import re
from typing import List, Optional, Protocol

from app.core import schemas
from app.core.sql_sandbox.formatter import format_results_as_markdown
from app.core.sql_sandbox.sandbox import SQLSandbox
from app.ai_feature.llm_client import LLMError, Message

logger = logging.getLogger(__name__)

CANNOT_GENERATE = "CANNOT_GENERATE"

SCHEMA_PROMPT = """
You are a SQL query generator for a business process intelligence database. Generate PostgreSQL SELECT queries to answer user questions about the data.

=== DATABASE SCHEMA ===

TABLE: companies
  - id (integer, primary key)
  - name (text), industry (text), anzsic (text) - ANZSIC code
  - created_at, updated_at (timestamp)

TABLE: business_units
  - id (integer, primary key)
  - company_id (integer, FK -> companies.id)
  - parent_id (integer, nullable, self-reference for hierarchy)
  - name (text), description (text)
  - fte (integer) - Full-time equivalent headcount

TABLE: processes
  - id (integer, primary key)
  - business_id (integer, FK -> companies.id)
  - business_unit_id (integer, FK -> business_units.id, nullable)
  - name (text), description (text)
  - volume (numeric), volume_unit (text), fte (numeric), owner (text), systems_used (text)

TABLE: pain_points
  - id (integer, primary key)
  - statement (text) - Description of the pain point
  - impact_type (json array of text), business_impact (text)
  - magnitude, frequency (numeric, 1-10 scale)
  - time_per_unit (numeric)
  - total_hours_per_month (numeric) - Key metric for impact
  - fte_count (numeric), root_cause (text), workarounds (text), dependencies (text)
  - risk_level (text) - 'High', 'Medium', 'Low'
  - effort_solving (numeric, 1-10 scale)
  - taxonomy_level1_id, taxonomy_level2_id, taxonomy_level3_id (integer, FK -> taxonomy_categories.id)
  - company_id (integer, FK -> companies.id)
  - business_unit_id (integer, FK -> business_units.id)

TABLE: use_cases (also called "solutions")
  - id (integer, primary key)
  - name (text), solution_provider (text) - e.g. "Adobe", "Microsoft", "UiPath"
  - problem_to_solve (text), solution_overview (text)
  - complexity (text) - 'Low', 'Medium', 'High'
  - data_requirements (json array of text), systems_impacted (text), risks (text)
  - estimated_delivery_time (text), cost_range (text), confidence_level (text)
  - process_id (FK -> processes.id), company_id (FK -> companies.id), business_unit_id (FK -> business_units.id)

TABLE: pain_point_use_cases (links pain points to solutions)
  - pain_point_id (FK -> pain_points.id), use_case_id (FK -> use_cases.id)
  - percentage_solved (numeric), notes (text)

TABLE: process_pain_points (links processes to pain points)
  - process_id (FK -> processes.id), pain_point_id (FK -> pain_points.id)

TABLE: taxonomy_categories
  - id (integer, primary key), name (text), parent_id (integer, nullable), level (integer) - 1, 2 or 3

=== KEY CONCEPTS ===

- A pain point is LINKED if it has at least one row in pain_point_use_cases, UNLINKED otherwise.
  Linked: EXISTS (SELECT 1 FROM pain_point_use_cases ppuc WHERE ppuc.pain_point_id = pp.id)
- Users may call use cases "solutions", "use cases", or refer to them by provider name.
- Companies contain business units, business units contain processes, processes and
  business units have pain points, pain points can be linked to solutions.

=== RULES ===

1. Only generate SELECT or WITH...SELECT queries
2. Always include LIMIT (default 50 for lists, 100 max)
3. Use table aliases (pp, uc, bu, c, ppuc)
4. Use ILIKE with % wildcards for text searches
5. Use COALESCE for nulls, order results meaningfully
6. Use LEFT JOINs when entities without related records must be included
7. Never use SQL comments

=== OUTPUT FORMAT ===

Return ONLY the SQL query, nothing else. No explanation, no markdown code blocks.
If you cannot generate a valid query for the question, return: CANNOT_GENERATE
"""

_FENCE_START = re.compile(r"^```(?:sql)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")

DOMAIN_ENTITIES = [
    "pain point",
    "pain points",
    "painpoint",
    "painpoints",
    "solution",
    "solutions",
    "use case",
    "use cases",
    "business unit",
    "business units",
    "company",
    "companies",
    "process",
    "processes",
]

ACTION_WORDS = [
    "list",
    "show",
    "find",
    "get",
    "display",
    "count",
    "total",
    "how many",
    "which",
    "what are",
]

_ENTITY = r"(pain\s*point|solution|business\s+unit|company|process)"
_VENDORS = r"(adobe|microsoft|uipath|automation\s*anywhere)"

ANALYTICAL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        rf"which\s+.*{_ENTITY}",
        rf"list\s+.*{_ENTITY}",
        rf"show\s+.*{_ENTITY}",
        rf"find\s+.*{_ENTITY}",
        rf"how\s+many\s+{_ENTITY}",
        r"(linked|unlinked|not\s+linked).*(pain\s*point|solution)",
        r"(pain\s*point|solution).*(linked|unlinked|not\s+linked)",
        rf"top\s+\d*\s*{_ENTITY}",
        r"(most|least|highest|lowest).*(pain\s*point|solution|hours|business\s+unit)",
        r"breakdown\s+(by|of|per)",
        r"(pain\s*point|solution|hours).*(per|by)\s+(business\s+unit|company|process)",
        r"total\s+(pain\s*point|solution|hours)",
        r"count\s+(of\s+)?(pain\s*point|solution|business\s+unit)",
        rf"what\s+(are|is)\s+the\s+{_ENTITY}",
        rf"{_VENDORS}.*(solution|linked|pain\s*point)",
        rf"(solution|linked|pain\s*point).*{_VENDORS}",
        rf"rank(ing)?\s+{_ENTITY}",
        rf"compare\s+.*{_ENTITY}",
        r"average\s+(hours|magnitude|frequency|fte)",
        r"hours\s+per\s+month",
    )
]


class CompletionClient(Protocol):
    async def complete(
        self, messages: List[Message], temperature: float = 0, max_tokens: int = 1000
    ) -> str: ...


def clean_generated_sql(text: str) -> str:
    """Remove ```sql ... ``` fences the model sometimes adds."""
    cleaned = _FENCE_START.sub("", text.strip())
    cleaned = _FENCE_END.sub("", cleaned)
    return cleaned.strip()


def is_data_question(question: str) -> bool:
    """
    Heuristic: should this chat message be answered from the database?

    True when an analytical pattern matches, or when the question names at
    least one domain entity together with an action word.
    """
    lower_q = question.lower()

    if any(pattern.search(lower_q) for pattern in ANALYTICAL_PATTERNS):
        return True

    entity_hits = sum(1 for entity in DOMAIN_ENTITIES if entity in lower_q)
    has_action = any(word in lower_q for word in ACTION_WORDS)
    return entity_hits >= 1 and has_action


def build_messages(question: str, previous_error: Optional[str] = None) -> List[Message]:
    system = SCHEMA_PROMPT
    if previous_error:
        system += (
            f"\n\nPREVIOUS QUERY FAILED WITH ERROR: {previous_error}\n"
            "Please fix the query."
        )
    return [
        {"role": "system", "content": system},
        {
            "role": "user",
            "content": f'Generate a PostgreSQL query to answer this question: "{question}"',
        },
    ]


async def generate_sql(
    question: str, llm: CompletionClient, previous_error: Optional[str] = None
) -> Optional[str]:
    """Ask the model for SQL; None when it declines or answers nothing."""
    answer = await llm.complete(build_messages(question, previous_error))
    if not answer or answer.strip() == CANNOT_GENERATE:
        return None
    cleaned = clean_generated_sql(answer)
    return cleaned or None


async def generate_and_execute_query(
    question: str,
    sandbox: SQLSandbox,
    llm: CompletionClient,
    user_id: Optional[str] = None,
) -> schemas.TextToSqlResult:
    """
    Answer a natural-language question with one sandboxed query.

    One retry: if the first query fails (rejected, timed out or database
    error) the model gets the error message and a second chance.
    """
    try:
        query = await generate_sql(question, llm)
        if query is None:
            return schemas.TextToSqlResult(
                success=False,
                error=(
                    "I couldn't generate a query for that question. Could you rephrase it "
                    "or be more specific about what data you're looking for?"
                ),
            )

        logger.info(f"[TextToSQL] Generated query for {question[:50]!r}: {query}")
        result = await sandbox.execute(query, user_id=user_id)

        if result.success:
            return schemas.TextToSqlResult(
                success=True,
                query=query,
                results=result,
                formatted_results=format_results_as_markdown(result),
            )

        logger.warning(f"[TextToSQL] Query execution failed: {result.error}")
        retry_query = await generate_sql(question, llm, previous_error=result.error)
        if retry_query is not None:
            logger.info(f"[TextToSQL] Retry query: {retry_query}")
            retry_result = await sandbox.execute(retry_query, user_id=user_id)
            if retry_result.success:
                return schemas.TextToSqlResult(
                    success=True,
                    query=retry_query,
                    results=retry_result,
                    formatted_results=format_results_as_markdown(retry_result),
                )

        return schemas.TextToSqlResult(
            success=False,
            query=query,
            error=f"Query error: {result.error}. Please try rephrasing your question.",
        )

    except LLMError as e:
        logger.error(f"[TextToSQL] Error: {e}")
        return schemas.TextToSqlResult(
            success=False, error=f"Failed to process query: {e}"
        )
