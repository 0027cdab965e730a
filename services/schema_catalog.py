"""
Schema catalog: SQLAlchemy reflection of the target database.
Reflected once on first use and cached for the lifetime of the process.
"""
import asyncio
import logging
from typing import Callable, List, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from schemas.catalog import ColumnInfo, TableInfo

logger = logging.getLogger(__name__)


def reflect_tables(engine: Engine, schema: Optional[str] = None) -> List[TableInfo]:
    """Reflect tables, columns and foreign keys from the database."""
    insp = inspect(engine)
    if schema is None and engine.dialect.name == "postgresql":
        schema = "public"

    tables: List[TableInfo] = []
    for table_name in sorted(insp.get_table_names(schema=schema)):
        columns = []
        for col in insp.get_columns(table_name, schema=schema):
            data_type = str(col["type"]).upper()
            # Simplify long type strings
            if "(" in data_type:
                data_type = data_type.split("(")[0]
            columns.append(ColumnInfo(name=col["name"], data_type=data_type))

        foreign_keys = []
        for fk in insp.get_foreign_keys(table_name, schema=schema):
            for local, remote in zip(fk["constrained_columns"], fk["referred_columns"]):
                foreign_keys.append(f"{table_name}.{local} -> {fk['referred_table']}.{remote}")

        tables.append(TableInfo(name=table_name, columns=columns, foreign_keys=foreign_keys))

    logger.info("Reflected %d tables", len(tables))
    return tables


class SchemaCatalog:
    """Lazily reflected view of the tables the SQL generator may use"""

    def __init__(self, engine_factory: Optional[Callable[[], Engine]] = None, tables: Optional[List[TableInfo]] = None):
        self._engine_factory = engine_factory
        self._tables = tables
        self._lock = asyncio.Lock()

    @classmethod
    def from_tables(cls, tables: List[TableInfo]) -> "SchemaCatalog":
        return cls(tables=list(tables))

    async def tables(self) -> List[TableInfo]:
        if self._tables is None:
            async with self._lock:
                if self._tables is None:
                    if self._engine_factory is None:
                        raise RuntimeError("SchemaCatalog has neither tables nor an engine to reflect")
                    self._tables = await asyncio.to_thread(reflect_tables, self._engine_factory())
        return self._tables

    async def describe(self) -> str:
        """Full schema text handed to the schema linker"""
        lines = []
        for table in await self.tables():
            columns = ", ".join(f"{c.name} {c.data_type}" for c in table.columns)
            lines.append(f"TABLE {table.name} ({columns})")
            for fk in table.foreign_keys:
                lines.append(f"  FOREIGN KEY {fk}")
        return "\n".join(lines)
