"""
Data context: the date range the data actually covers, so relative dates in a
question ("last month", "this year") can be anchored to the data rather than
to the wall clock.
"""
import asyncio
import logging
from typing import Any, Optional

from schemas.catalog import DateRange
from services.sql_executor import SQLExecutor

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


class DataContext:
    """Looks up MIN/MAX of one date column; a successful lookup is cached."""

    def __init__(self, executor: SQLExecutor, table: str, column: str):
        self.executor = executor
        self.table = table
        self.column = column
        self._date_range: Optional[DateRange] = None
        self._lock = asyncio.Lock()

    @property
    def query(self) -> str:
        return f'SELECT MIN("{self.column}") AS min_date, MAX("{self.column}") AS max_date FROM "{self.table}"'

    async def date_range(self) -> Optional[DateRange]:
        """None when the range cannot be determined; never raises"""
        if self._date_range is not None:
            return self._date_range
        async with self._lock:
            if self._date_range is None:
                try:
                    df = await self.executor.execute(self.query)
                except Exception as e:
                    logger.warning("Could not fetch data date range from %s.%s: %s", self.table, self.column, e)
                    return None
                if df.empty or df.iloc[0].isna().any():
                    return None
                row = df.iloc[0]
                self._date_range = DateRange(earliest=_as_text(row["min_date"]), latest=_as_text(row["max_date"]))
                logger.info("Data covers %s to %s", self._date_range.earliest, self._date_range.latest)
        return self._date_range
