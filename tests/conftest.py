import asyncio
import os
import sqlite3
import tempfile
from typing import Dict, List, Optional, Union

import pandas as pd
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config.settings import AppSettings, PipelineSettings
from core.errors import ExecutionError
from core.process_store import ProcessStore
from main import create_app
from schemas.catalog import LinkedSchema, LinkedTable
from schemas.chat import ConversationMessage
from services.chart_inference import ChartInferenceEngine
from services.message_processor import MessageProcessor

LINKED = LinkedSchema(
    tables=[LinkedTable(name="orders", columns=["id", "category", "total"])],
    foreign_keys=[],
)

THREE_ROWS = pd.DataFrame({"category": ["food", "drinks", "dessert"], "revenue": [120.0, 80.5, 42.0]})


class FakeLinker:
    def __init__(self, schema: LinkedSchema = LINKED, error: Optional[Exception] = None, delay: float = 0):
        self.schema = schema
        self.error = error
        self.delay = delay
        self.calls = 0

    async def link(self, messages):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.schema


class FakeGenerator:
    """Returns the scripted outputs in call order; Exception outputs are raised."""

    def __init__(self, outputs: List[Union[str, Exception]], delays: Optional[Dict[int, float]] = None,
                 refinements: Optional[Dict[str, str]] = None):
        self.outputs = outputs
        self.delays = delays or {}
        self.refinements = refinements or {}
        self.calls = 0
        self.temperatures: List[float] = []
        self.refine_calls = 0
        self.gate: Optional[asyncio.Event] = None

    async def generate(self, messages, linked_schema, model=None, temperature=0.0):
        index = self.calls
        self.calls += 1
        self.temperatures.append(temperature)
        if self.gate is not None:
            await self.gate.wait()
        if index in self.delays:
            await asyncio.sleep(self.delays[index])
        output = self.outputs[index % len(self.outputs)]
        if isinstance(output, Exception):
            raise output
        return output

    async def refine(self, sql, error, messages, linked_schema, model=None):
        self.refine_calls += 1
        return self.refinements.get(sql, "")


class FakeExecutor:
    """Maps SQL text to a DataFrame; unknown SQL fails like a bad column reference."""

    def __init__(self, results: Dict[str, pd.DataFrame], delays: Optional[Dict[str, float]] = None):
        self.results = results
        self.delays = delays or {}
        self.executed: List[str] = []

    async def execute(self, sql):
        self.executed.append(sql)
        if sql in self.delays:
            await asyncio.sleep(self.delays[sql])
        if sql not in self.results:
            raise ExecutionError('column "nope" does not exist')
        return self.results[sql].copy()


@pytest.fixture
def messages():
    return [ConversationMessage(role="user", content="Revenue by category?")]


@pytest.fixture
def store():
    return ProcessStore()


@pytest.fixture
def make_processor(store):
    def _make(linker=None, generator=None, executor=None, **pipeline):
        return MessageProcessor(
            store=store,
            linker=linker or FakeLinker(),
            generator=generator or FakeGenerator(["SELECT category, revenue FROM orders"]),
            executor=executor or FakeExecutor({"SELECT category, revenue FROM orders": THREE_ROWS}),
            charts=ChartInferenceEngine(),
            settings=PipelineSettings(**pipeline),
        )
    return _make


@pytest.fixture
def settings():
    return AppSettings(environment="testing")


@pytest_asyncio.fixture
async def make_client(settings, store):
    clients = []

    async def _make(processor):
        app = create_app(settings=settings, store=store, processor=processor)
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append((client, app))
        return client

    yield _make

    for client, app in clients:
        await client.aclose()
        await app.state.job_runner.shutdown()


async def wait_for_terminal(store: ProcessStore, process_id: str, attempts: int = 200):
    for _ in range(attempts):
        process = await store.get(process_id)
        if process.status.is_terminal:
            return process
        await asyncio.sleep(0.01)
    raise AssertionError(f"process {process_id} never reached a terminal status")


@pytest.fixture
def temp_sqlite_db():
    fd, path = tempfile.mkstemp(suffix=".db")
    try:
        conn = sqlite3.connect(path)
        cur = conn.cursor()
        cur.execute("CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT);")
        cur.execute(
            "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER REFERENCES customers(id), "
            "category TEXT, total REAL);"
        )
        cur.execute("INSERT INTO customers (name) VALUES ('Ada'), ('Grace');")
        cur.executemany(
            "INSERT INTO orders (customer_id, category, total) VALUES (?, ?, ?);",
            [(1, "food", 10.0), (1, "drinks", 4.5), (2, "food", 7.25)],
        )
        conn.commit()
        conn.close()
        yield path
    finally:
        os.close(fd)
        os.remove(path)


