"""
Schema linking: narrows the full catalog down to the tables and columns a
conversation needs, using the LLM in JSON mode.
"""
import logging
from typing import Dict, List, Optional, Set

from pydantic import ValidationError

from core.errors import LinkingError, LLMError
from schemas.catalog import LinkedSchema, LinkedTable
from schemas.chat import ConversationMessage
from services.llm_client import LLMClient
from services.schema_catalog import SchemaCatalog

logger = logging.getLogger(__name__)

SCHEMA_LINKING_SYSTEM_PROMPT = """You are a database schema analyst.
Your task is to identify which tables and columns are relevant to answer a user's question.

Rules:
1. Only select tables that are directly needed to answer the question
2. For each table, only select columns that are needed
3. Always include foreign key columns needed for JOINs
4. Rank tables by relevance - most relevant first
5. Consider date/time columns for time-based questions

Reply with a JSON object of the form:
{"tables": [{"name": "<table>", "columns": ["<column>", ...]}], "foreignKeys": ["<a.x -> b.y>", ...]}"""


def format_conversation(messages: List[ConversationMessage]) -> str:
    return "\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in messages
    )


def _fk_tables(fk: str) -> Set[str]:
    """Table names on both ends of "orders.customer_id -> customers.id"."""
    tables = set()
    for end in fk.split("->"):
        table, _, column = end.strip().rpartition(".")
        if table and column:
            tables.add(table)
    return tables


class SchemaLinker:
    def __init__(self, llm: LLMClient, catalog: SchemaCatalog, model: Optional[str] = None):
        self.llm = llm
        self.catalog = catalog
        self.model = model

    async def link(self, messages: List[ConversationMessage]) -> LinkedSchema:
        try:
            tables = await self.catalog.tables()
            schema_text = await self.catalog.describe()
        except Exception as e:
            raise LinkingError(f"Could not load database schema: {e}") from e

        prompt = f"""Given this database schema:

{schema_text}

And this conversation (the last user message is the current question):
{format_conversation(messages)}

Identify the relevant tables and columns needed to write a SQL query.
Think about:
- What data is being asked for?
- What filters might be needed?
- What tables need to be joined?"""

        try:
            raw = await self.llm.complete(
                SCHEMA_LINKING_SYSTEM_PROMPT,
                [{"role": "user", "content": prompt}],
                model=self.model,
                temperature=0.0,
                json_mode=True,
            )
            linked = LinkedSchema.model_validate_json(raw)
        except (LLMError, ValidationError) as e:
            raise LinkingError(str(e)) from e

        return self._restrict_to_catalog(linked, {t.name: t.column_names for t in tables})

    def _restrict_to_catalog(self, linked: LinkedSchema, known: Dict[str, List[str]]) -> LinkedSchema:
        """Drop tables and columns the model invented"""
        kept: List[LinkedTable] = []
        for table in linked.tables:
            if table.name not in known:
                logger.warning("Schema linker returned unknown table %s", table.name)
                continue
            columns = [c for c in table.columns if c in known[table.name]]
            kept.append(LinkedTable(name=table.name, columns=columns or known[table.name]))

        if not kept:
            raise LinkingError("Schema linker did not select any known table")

        names = {t.name for t in kept}
        foreign_keys = [fk for fk in linked.foreign_keys if _fk_tables(fk) & names]
        return LinkedSchema(tables=kept, foreign_keys=foreign_keys)
