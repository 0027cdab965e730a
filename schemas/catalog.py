"""Pydantic schemas for the reflected database catalog and linked schema subsets."""
from typing import List

from pydantic import Field

from schemas.chat import CamelModel


class ColumnInfo(CamelModel):
    name: str
    data_type: str


class TableInfo(CamelModel):
    name: str
    columns: List[ColumnInfo]
    foreign_keys: List[str] = Field(default_factory=list)   # "orders.customer_id -> customers.id"

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


class LinkedTable(CamelModel):
    name: str
    columns: List[str]


class LinkedSchema(CamelModel):
    tables: List[LinkedTable]
    foreign_keys: List[str] = Field(default_factory=list)

    def describe(self) -> str:
        """Render as the comment-block schema header used in SQL prompts."""
        lines = ["### PostgreSQL tables, with their properties:", "#"]
        for table in self.tables:
            lines.append(f"# {table.name} ({', '.join(table.columns)})")
        if self.foreign_keys:
            lines.append("#")
            lines.append("### Foreign keys:")
            for fk in self.foreign_keys:
                lines.append(f"# {fk}")
        return "\n".join(lines)


class DateRange(CamelModel):
    earliest: str
    latest: str
