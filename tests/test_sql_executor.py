import pytest

from core.errors import ExecutionError
from services.sql_executor import SQLExecutor


@pytest.fixture
def executor(temp_sqlite_db):
    executor = SQLExecutor(f"sqlite:///{temp_sqlite_db}", max_rows=500)
    yield executor
    executor.dispose()


@pytest.mark.asyncio
async def test_execute_returns_named_columns(executor):
    df = await executor.execute(
        "SELECT category, SUM(total) AS revenue FROM orders GROUP BY category ORDER BY category"
    )

    assert list(df.columns) == ["category", "revenue"]
    assert df["category"].tolist() == ["drinks", "food"]
    assert df["revenue"].tolist() == [4.5, 17.25]


@pytest.mark.asyncio
async def test_empty_result_keeps_columns(executor):
    df = await executor.execute("SELECT id, total FROM orders WHERE total > 1000")
    assert df.empty
    assert list(df.columns) == ["id", "total"]


@pytest.mark.asyncio
async def test_rows_beyond_the_limit_are_truncated(temp_sqlite_db):
    executor = SQLExecutor(f"sqlite:///{temp_sqlite_db}", max_rows=2)
    try:
        df = await executor.execute("SELECT id FROM orders ORDER BY id")
    finally:
        executor.dispose()

    assert df["id"].tolist() == [1, 2]


@pytest.mark.asyncio
async def test_database_errors_become_execution_errors(executor):
    with pytest.raises(ExecutionError) as exc:
        await executor.execute("SELECT nope FROM orders")
    assert "nope" in str(exc.value)


def test_engine_is_created_lazily_and_disposed(temp_sqlite_db):
    executor = SQLExecutor(f"sqlite:///{temp_sqlite_db}")
    assert executor._engine is None

    engine = executor.engine
    assert executor.engine is engine

    executor.dispose()
    assert executor._engine is None
