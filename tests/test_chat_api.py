import asyncio

import pytest
from httpx import AsyncClient

from config.settings import AppSettings
from conftest import FakeGenerator, wait_for_terminal

PAYLOAD = {"messages": [{"role": "user", "content": "Revenue by category?"}]}


@pytest.mark.asyncio
async def test_submit_returns_process_id_and_completes(make_client, make_processor, store):
    client: AsyncClient = await make_client(make_processor())

    response = await client.post("/chat", json={**PAYLOAD, "options": {"debug": True}})
    assert response.status_code == 202
    process_id = response.json()["processId"]

    await wait_for_terminal(store, process_id)
    response = await client.get(f"/chat/{process_id}")

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == process_id
    assert body["status"] == "completed"
    assert "error" not in body
    assert body["createdAt"] <= body["updatedAt"]
    result = body["result"]
    assert result["sql"] == "SELECT category, revenue FROM orders"
    assert result["charts"][0]["type"] == "bar"
    assert result["charts"][0]["config"] == {"xKey": "category", "yKey": "revenue"}
    assert result["debug"]["candidateCount"] == 1
    assert result["debug"]["confidence"] == 1.0


@pytest.mark.asyncio
async def test_submitted_process_is_visible_before_work_finishes(make_client, make_processor):
    generator = FakeGenerator(["SELECT category, revenue FROM orders"])
    generator.gate = asyncio.Event()
    client = await make_client(make_processor(generator=generator))

    process_id = (await client.post("/chat", json=PAYLOAD)).json()["processId"]
    response = await client.get(f"/chat/{process_id}")

    assert response.status_code == 200
    assert response.json()["status"] in ("pending", "processing")
    assert "result" not in response.json()
    generator.gate.set()


@pytest.mark.asyncio
async def test_consistency_options_are_passed_through(make_client, make_processor, store):
    generator = FakeGenerator(["SELECT category, revenue FROM orders"])
    client = await make_client(make_processor(generator=generator))

    response = await client.post(
        "/chat", json={**PAYLOAD, "options": {"useConsistency": True, "reasoningLevel": "medium"}}
    )
    await wait_for_terminal(store, response.json()["processId"])

    assert generator.calls == 2


@pytest.mark.asyncio
async def test_failed_job_reports_error(make_client, make_processor, store):
    client = await make_client(make_processor(generator=FakeGenerator(["DROP TABLE orders"])))

    process_id = (await client.post("/chat", json=PAYLOAD)).json()["processId"]
    await wait_for_terminal(store, process_id)
    body = (await client.get(f"/chat/{process_id}")).json()

    assert body["status"] == "failed"
    assert body["error"] == "no candidate produced an executable query"
    assert "result" not in body


@pytest.mark.asyncio
async def test_unknown_process_is_not_found(make_client, make_processor):
    client = await make_client(make_processor())

    response = await client.get("/chat/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {"error": "Process not found"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"messages": []},
        {"messages": "hello"},
        {"messages": [{"role": "system", "content": "hi"}]},
        {"messages": [{"role": "user", "content": "hi"}], "options": {"reasoningLevel": "extreme"}},
    ],
)
async def test_malformed_requests_are_rejected(make_client, make_processor, store, payload):
    client = await make_client(make_processor())

    response = await client.post("/chat", json=payload)

    assert response.status_code == 400
    assert "error" in response.json()
    assert len(store) == 0


@pytest.mark.asyncio
async def test_conversation_without_user_question_is_rejected(make_client, make_processor, store):
    client = await make_client(make_processor())

    response = await client.post("/chat", json={"messages": [{"role": "assistant", "content": "Hi!"}]})

    assert response.status_code == 400
    assert response.json() == {"error": "No user message found in the conversation."}
    assert len(store) == 0


@pytest.mark.asyncio
async def test_unknown_model_is_rejected(make_client, make_processor, store):
    client = await make_client(make_processor())

    response = await client.post("/chat", json={**PAYLOAD, "options": {"model": "gpt-2"}})

    assert response.status_code == 400
    assert "Unknown model" in response.json()["error"]
    assert len(store) == 0


@pytest.mark.asyncio
async def test_root_reports_running(make_client, make_processor):
    client = await make_client(make_processor())
    response = await client.get("/")
    assert response.json()["status"] == "running"


@pytest.mark.asyncio
async def test_docs_are_served_outside_production(make_client, make_processor):
    client = await make_client(make_processor())
    assert (await client.get("/docs")).status_code == 200


@pytest.mark.asyncio
@pytest.mark.parametrize("settings", [AppSettings(environment="production")])
async def test_docs_are_hidden_in_production(make_client, make_processor, settings):
    client = await make_client(make_processor())

    assert (await client.get("/docs")).status_code == 404
    assert (await client.get("/")).json()["status"] == "running"
