# tests/test_api.py
import json

import httpx
import pytest
from sqlalchemy import select

from docrag.api.chat import answer_events
from docrag.core.errors import VectorStoreError
from docrag.llm.prompt_template import PromptMode
from docrag.main import app
from docrag.models.chat import Message
from docrag.models.document import DocumentStatus
from docrag.retriever.retriever import RetrievalResult
from docrag.utils.chat_persistence import create_chat
from tests.conftest import paragraphs
from tests.test_llm import FakeChatModel

USER = {"X-User-Id": "1"}
OTHER = {"X-User-Id": "2"}


@pytest.fixture
async def client(db):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def sse_events(body: str):
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


async def test_requires_user_identity(client):
    resp = await client.get("/documents/status/1")
    assert resp.status_code == 401


async def test_health(client):
    resp = await client.get("/health", headers={"X-Request-Id": "abc123"})
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Request-Id"] == "abc123"


async def test_ingest_then_poll_status(client, fake_embedder):
    resp = await client.post("/documents", json={"name": "guide.md", "content": paragraphs(3)}, headers=USER)
    assert resp.status_code == 202
    doc_id = resp.json()["id"]
    assert resp.json()["status"] == DocumentStatus.PENDING.value

    # background task has run by the time the ASGI call returns
    resp = await client.get(f"/documents/status/{doc_id}", headers=USER)
    assert resp.json() == {"document_id": doc_id, "status": "completed", "chunk_count": 3}

    resp = await client.get(f"/documents/status/{doc_id}", headers=OTHER)
    assert resp.status_code == 404


async def test_ingest_into_foreign_workspace(client, make_workspace):
    ws = await make_workspace(owner_id=2)
    resp = await client.post(
        "/documents", json={"name": "a", "content": "text", "workspace_id": ws.id}, headers=USER,
    )
    assert resp.status_code == 404


async def test_retry_conflict_while_indexing(client, make_document):
    doc = await make_document(content=paragraphs(1), status=DocumentStatus.INDEXING)
    resp = await client.post(f"/documents/{doc.id}/retry", headers=USER)
    assert resp.status_code == 409


async def test_retry_failed_document(client, make_document, fake_embedder):
    doc = await make_document(content=paragraphs(2), status=DocumentStatus.FAILED)
    resp = await client.post(f"/documents/{doc.id}/retry", headers=USER)
    assert resp.status_code == 202

    resp = await client.get(f"/documents/status/{doc.id}", headers=USER)
    assert resp.json()["status"] == "completed"
    assert resp.json()["chunk_count"] == 2


async def test_retry_without_content(client, make_document):
    doc = await make_document(content=None, status=DocumentStatus.FAILED)
    resp = await client.post(f"/documents/{doc.id}/retry", headers=USER)
    assert resp.status_code == 400


async def test_url_ingest_needs_firecrawl(client):
    resp = await client.post("/documents/url", json={"url": "https://example.com"}, headers=USER)
    assert resp.status_code == 503


async def test_delete_document(client, fake_embedder):
    resp = await client.post("/documents", json={"name": "a.txt", "content": "short text"}, headers=USER)
    doc_id = resp.json()["id"]

    assert (await client.delete(f"/documents/{doc_id}", headers=OTHER)).status_code == 404
    assert (await client.delete(f"/documents/{doc_id}", headers=USER)).status_code == 200
    assert (await client.get(f"/documents/status/{doc_id}", headers=USER)).status_code == 404


async def test_chat_stream(client, fake_embedder, mocker):
    mocker.patch("docrag.llm.llm.get_chat_model", return_value=FakeChatModel(["Per ", "[guide.md]."]))
    resp = await client.post("/documents", json={"name": "guide.md", "content": paragraphs(2)}, headers=USER)
    doc_id = resp.json()["id"]

    resp = await client.post(
        "/chat/stream", json={"message": "p0w1 p0w2?", "document_id": doc_id}, headers=USER,
    )
    assert resp.status_code == 200
    chat_id = int(resp.headers["X-Chat-Id"])

    events = sse_events(resp.text)
    assert [e["content"] for e in events if e["type"] == "token"] == ["Per ", "[guide.md]."]
    sources = next(e for e in events if e["type"] == "sources")
    assert sources["sources"] == ["[guide.md]"]
    assert sources["used_fallback"] is False
    assert events[-1] == {"type": "end"}

    resp = await client.get(f"/chat/{chat_id}/messages", headers=USER)
    assert [(m["role"], m["content"]) for m in resp.json()["messages"]] == [
        ("user", "p0w1 p0w2?"),
        ("assistant", "Per [guide.md]."),
    ]
    assert (await client.get(f"/chat/{chat_id}/messages", headers=OTHER)).status_code == 404


async def test_chat_stream_error_event(client, make_document, fake_embedder, mocker):
    mocker.patch("docrag.llm.llm.get_chat_model", return_value=FakeChatModel(["x"], fail_after=0))
    doc = await make_document(status=DocumentStatus.COMPLETED)

    resp = await client.post("/chat/stream", json={"message": "hi", "document_id": doc.id}, headers=USER)
    events = sse_events(resp.text)
    assert events[0]["type"] == "error"
    assert events[-1] == {"type": "end"}


async def test_chat_scope_validation(client):
    resp = await client.post(
        "/chat/stream", json={"message": "hi", "document_id": 1, "workspace_id": 2}, headers=USER,
    )
    assert resp.status_code == 422


async def test_client_disconnect_keeps_partial_answer(db, mocker):
    model = FakeChatModel(["Part ", "two ", "three"])
    mocker.patch("docrag.llm.llm.get_chat_model", return_value=model)
    chat = await create_chat(db, owner_id=1, first_message="q?")

    events = answer_events(chat.id, "q?", RetrievalResult(context="ctx"), [], PromptMode.DOCUMENT_ONLY)
    first = await events.__anext__()
    assert json.loads(first[len("data: "):]) == {"type": "token", "content": "Part "}
    await events.aclose()

    assert model.closed is True
    stored = (await db.execute(select(Message).where(Message.chat_id == chat.id))).scalars().all()
    assert [(m.role, m.content) for m in stored] == [("assistant", "Part ")]


async def test_chat_on_deleted_document(client, fake_embedder, mocker):
    mocker.patch("docrag.llm.llm.get_chat_model", return_value=FakeChatModel(["ok"]))
    resp = await client.post("/documents", json={"name": "gone.md", "content": paragraphs(2)}, headers=USER)
    doc_id = resp.json()["id"]
    resp = await client.post("/chat/stream", json={"message": "p0w1?", "document_id": doc_id}, headers=USER)
    chat_id = int(resp.headers["X-Chat-Id"])

    assert (await client.delete(f"/documents/{doc_id}", headers=USER)).status_code == 200

    retrieve = mocker.patch("docrag.api.chat.retrieve")
    resp = await client.post(
        "/chat/stream", json={"message": "p0w1?", "chat_id": chat_id, "document_id": doc_id}, headers=USER,
    )
    assert resp.status_code == 404
    assert not retrieve.called


async def test_chat_cannot_switch_scope(client, make_document, fake_embedder, mocker):
    mocker.patch("docrag.llm.llm.get_chat_model", return_value=FakeChatModel(["ok"]))
    first = await make_document(name="a.md", status=DocumentStatus.COMPLETED)
    second = await make_document(name="b.md", status=DocumentStatus.COMPLETED)
    resp = await client.post("/chat/stream", json={"message": "hi", "document_id": first.id}, headers=USER)
    chat_id = int(resp.headers["X-Chat-Id"])

    resp = await client.post(
        "/chat/stream", json={"message": "hi", "chat_id": chat_id, "document_id": second.id}, headers=USER,
    )
    assert resp.status_code == 400

    resp = await client.post(
        "/chat/stream", json={"message": "again", "chat_id": chat_id, "document_id": first.id}, headers=USER,
    )
    assert resp.status_code == 200
    assert resp.headers["X-Chat-Id"] == str(chat_id)


async def test_retry_chunk_cleanup_failure(client, make_document, mocker):
    mocker.patch("docrag.rag.pipeline.delete_by_document", side_effect=VectorStoreError("db gone"))
    doc = await make_document(content=paragraphs(1), status=DocumentStatus.COMPLETED)

    resp = await client.post(f"/documents/{doc.id}/retry", headers=USER)
    assert resp.status_code == 500
    assert "marked failed" in resp.json()["detail"]

    resp = await client.get(f"/documents/status/{doc.id}", headers=USER)
    assert resp.json()["status"] == "failed"
