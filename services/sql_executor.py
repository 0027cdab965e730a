"""
SQL executor: runs generated queries through a SQLAlchemy engine and hands the
rows back as a DataFrame. PostgreSQL connections are read-only and carry a
statement timeout.
"""
import asyncio
import logging
import threading
from typing import Optional

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from config.settings import DatabaseSettings
from core.errors import ExecutionError

logger = logging.getLogger(__name__)


class SQLExecutor:
    def __init__(
        self,
        database_url: str,
        max_rows: int = 500,
        statement_timeout_ms: Optional[int] = None,
        pool_size: int = 10,
        max_overflow: int = 5,
        echo: bool = False,
    ):
        self.database_url = database_url
        self.max_rows = max_rows
        self.statement_timeout_ms = statement_timeout_ms
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.echo = echo
        self._engine: Optional[Engine] = None
        self._engine_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> "SQLExecutor":
        return cls(
            database_url=settings.database_url,
            max_rows=settings.max_rows,
            statement_timeout_ms=settings.statement_timeout_ms,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            echo=settings.echo_sql,
        )

    @property
    def engine(self) -> Engine:
        """Created on first use so the app can start without the database"""
        with self._engine_lock:
            if self._engine is None:
                self._engine = self._create_engine()
            return self._engine

    def _create_engine(self) -> Engine:
        if self.database_url.startswith("sqlite"):
            return create_engine(self.database_url, echo=self.echo)

        connect_args = {}
        if self.statement_timeout_ms and self.database_url.startswith("postgresql"):
            connect_args["options"] = f"-c statement_timeout={self.statement_timeout_ms}"
        return create_engine(
            self.database_url,
            pool_pre_ping=True,
            pool_size=self.pool_size,
            max_overflow=self.max_overflow,
            connect_args=connect_args,
            echo=self.echo,
        )

    async def execute(self, sql: str) -> pd.DataFrame:
        return await asyncio.to_thread(self._execute_sync, sql)

    def _execute_sync(self, sql: str) -> pd.DataFrame:
        try:
            with self.engine.connect() as conn:
                if conn.dialect.name == "postgresql":
                    conn = conn.execution_options(postgresql_readonly=True)
                result = conn.execute(text(sql))
                columns = list(result.keys())
                rows = result.fetchmany(self.max_rows + 1)
        except SQLAlchemyError as e:
            # Only the driver's own message, without the echoed statement
            detail = str(getattr(e, "orig", None) or e)
            raise ExecutionError(detail) from e

        if len(rows) > self.max_rows:
            logger.warning("Result truncated to %d rows", self.max_rows)
            rows = rows[: self.max_rows]
        return pd.DataFrame.from_records([tuple(r) for r in rows], columns=columns)

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
