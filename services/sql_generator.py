import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from core.errors import GenerationError, LLMError
from schemas.catalog import LinkedSchema
from schemas.chat import ConversationMessage
from services.data_context import DataContext
from services.llm_client import LLMClient
from utils.sql_guard import clean_sql

logger = logging.getLogger(__name__)

CALIBRATION_SYSTEM_PROMPT = """You are an excellent SQL writer for an analytics PostgreSQL database.

IMPORTANT TIPS - Follow these rules strictly:

Tip 1: Only SELECT columns explicitly requested.
- Don't add extra columns that "might be useful" - only what's asked.
- COUNT(*) should only appear in ORDER BY, not SELECT, unless the count is asked for.

Tip 2: Avoid "IN", "OR", "LEFT JOIN" as they often cause extra/duplicate results.
- Use DISTINCT when appropriate.
- Use LIMIT when asking for "top N" results.
- Prefer INNER JOIN over LEFT JOIN unless nulls are expected.

Tip 3: Match column names exactly as provided in the schema.

Tip 4: For aggregations, GROUP BY all non-aggregated columns in SELECT.

Tip 5: Write a single read-only query (SELECT or WITH ... SELECT)."""

REFINEMENT_SYSTEM_PROMPT = """You are an expert PostgreSQL query debugger.
Your task is to fix SQL queries that failed execution.

IMPORTANT RULES:
1. Return ONLY the corrected SQL query, no explanation
2. Do not use markdown code blocks
3. Preserve the original query intent
4. Use exact column and table names from the provided schema
5. Ensure the query is read-only (SELECT/WITH only)"""


def _history(messages: List[ConversationMessage]) -> List[Dict[str, str]]:
    """Earlier turns, passed to the model as chat messages"""
    return [{"role": m.role, "content": m.content} for m in messages[:-1]]


def _question(messages: List[ConversationMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return messages[-1].content


class SQLGenerator:
    """Produces one SQL candidate per call; sampling makes calls differ."""

    def __init__(self, llm: LLMClient, data_context: Optional[DataContext] = None):
        self.llm = llm
        self.data_context = data_context

    async def _date_context(self) -> str:
        now = datetime.now(timezone.utc).isoformat(timespec="seconds")
        lines = [f"Current date and time: {now}"]
        if self.data_context is not None:
            date_range = await self.data_context.date_range()
            if date_range is not None:
                lines.append(f"Data available from {date_range.earliest} to {date_range.latest}.")
                lines.append(
                    'Resolve relative dates ("last month", "this year", "recently") against the '
                    "latest date in the data, not the current date."
                )
        return "\n".join(lines)

    async def generate(
        self,
        messages: List[ConversationMessage],
        linked_schema: LinkedSchema,
        model: Optional[str] = None,
        temperature: float = 0.0,
    ) -> str:
        date_context = await self._date_context()
        prompt = f"""{linked_schema.describe()}
#
### Complete PostgreSQL query only and with no explanation,
### and do not select extra columns that are not explicitly requested in the query.
### {_question(messages)}

You MUST reply with ONLY a PLAIN TEXT SQL string

{date_context}
"""
        try:
            raw = await self.llm.complete(
                CALIBRATION_SYSTEM_PROMPT,
                [*_history(messages), {"role": "user", "content": prompt}],
                model=model,
                temperature=temperature,
            )
        except LLMError as e:
            raise GenerationError(str(e)) from e
        return clean_sql(raw)

    async def refine(
        self,
        sql: str,
        error: str,
        messages: List[ConversationMessage],
        linked_schema: LinkedSchema,
        model: Optional[str] = None,
    ) -> str:
        """Ask the model to repair a query using the database's error message"""
        prompt = f"""The following PostgreSQL query failed with an error.

### Failed SQL:
{sql}

### PostgreSQL Error:
{error}

### Original User Question:
"{_question(messages)}"

### Available Database Schema:
{linked_schema.describe()}

### Common Error Fixes:
- "column X does not exist" -> Check schema for correct column name (case-sensitive)
- "relation X does not exist" -> Use correct table/view name from schema
- "syntax error" -> Fix SQL syntax (missing comma, parenthesis, keyword)
- "division by zero" -> Use NULLIF(divisor, 0) or CASE WHEN
- "ambiguous column" -> Qualify with table alias (e.g., t.column_name)

Fix the SQL query to resolve this error. Return ONLY the corrected SQL:"""
        logger.info("Attempting SQL refinement after error: %s", error[:100])
        try:
            raw = await self.llm.complete(
                REFINEMENT_SYSTEM_PROMPT,
                [{"role": "user", "content": prompt}],
                model=model,
                temperature=0.0,
            )
        except LLMError as e:
            raise GenerationError(str(e)) from e
        return clean_sql(raw)
