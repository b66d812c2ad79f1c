"""Tests for the chat HTTP server."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from aiohttp.test_utils import TestClient, TestServer

from spurchat.history.store import HistoryStore
from spurchat.protocol import STANDARD_STRATEGY, Frame, decode_text
from spurchat.server import create_app
from spurchat.strategies.base import ChatStrategy
from spurchat.strategies.registry import StrategyRegistry
from spurchat.tasks import BackgroundTasks

# -- Helpers -----------------------------------------------------------------


class _HelloStrategy(ChatStrategy):
    name = STANDARD_STRATEGY

    async def generate(self, query):
        yield Frame.start()
        yield Frame.strategy(self.name)
        yield Frame.data("Hel")
        yield Frame.data("lo!")
        yield Frame.done()


class _RateLimitedStrategy(ChatStrategy):
    name = STANDARD_STRATEGY

    async def generate(self, query):
        yield Frame.start()
        yield Frame.data("Hel")
        yield Frame.error("Rate limit exceeded. Please wait and try again.")
        yield Frame.done()


def _registry() -> StrategyRegistry:
    registry = StrategyRegistry()
    registry.register("standard", _HelloStrategy)
    registry.register("limited", _RateLimitedStrategy)
    return registry


@pytest.fixture(autouse=True)
def _no_side_effects():
    """No real title calls and no keep-alive loop during tests."""
    with (
        patch("spurchat.orchestrator.complete_text", new_callable=AsyncMock, return_value="Hi"),
        patch("spurchat.server.start_keepalive", return_value=None),
    ):
        yield


@pytest.fixture
async def client(store: HistoryStore):
    app = create_app(store=store, registry=_registry(), tasks=BackgroundTasks())
    client = TestClient(TestServer(app))
    await client.start_server()
    yield client
    await client.close()


# -- Health check -----------------------------------------------------------


async def test_ping(client: TestClient) -> None:
    resp = await client.get("/ping")
    assert resp.status == 200
    assert await resp.text() == "pong"


async def test_health_check(client: TestClient) -> None:
    resp = await client.get("/health")
    assert resp.status == 200
    data = await resp.json()
    assert data["status"] == "ok"
    assert "timestamp" in data


async def test_cors_headers(client: TestClient) -> None:
    with patch("spurchat.server.settings.allowed_origins", "*"):
        resp = await client.get("/ping", headers={"Origin": "https://shop.example"})
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


async def test_cors_specific_origin(client: TestClient) -> None:
    with patch("spurchat.server.settings.allowed_origins", "https://shop.example"):
        allowed = await client.get("/ping", headers={"Origin": "https://shop.example"})
        denied = await client.get("/ping", headers={"Origin": "https://evil.example"})

    assert allowed.headers["Access-Control-Allow-Origin"] == "https://shop.example"
    assert "Access-Control-Allow-Origin" not in denied.headers


async def test_preflight(client: TestClient) -> None:
    resp = await client.options("/chat/message")
    assert resp.status == 204


# -- Chat: JSON mode -----------------------------------------------------------


async def test_chat_json_reply(client: TestClient, store: HistoryStore) -> None:
    resp = await client.post("/chat/message", json={"message": "  Hello  "})

    assert resp.status == 200
    data = await resp.json()
    assert data["reply"] == "Hello!"
    messages = await store.read_ordered(data["sessionId"])
    assert [m.content for m in messages] == ["Hello", "Hello!"]


async def test_chat_reuses_session(client: TestClient, store: HistoryStore) -> None:
    first = await (await client.post("/chat/message", json={"message": "Hi"})).json()
    payload = {"message": "Again", "sessionId": first["sessionId"]}
    second = await (await client.post("/chat/message", json=payload)).json()

    assert second["sessionId"] == first["sessionId"]
    assert len(await store.read_ordered(first["sessionId"])) == 4


async def test_chat_unknown_session_starts_new(client: TestClient) -> None:
    resp = await client.post("/chat/message", json={"message": "Hi", "sessionId": "nope"})
    data = await resp.json()
    assert data["sessionId"] != "nope"


async def test_chat_json_in_band_error(client: TestClient, store: HistoryStore) -> None:
    resp = await client.post("/chat/message", json={"message": "Hi", "strategy": "limited"})

    assert resp.status == 502
    data = await resp.json()
    assert data["error"] == "Rate limit exceeded. Please wait and try again."
    assert len(await store.read_ordered(data["sessionId"])) == 1


# -- Chat: streaming -----------------------------------------------------------


async def test_chat_stream(client: TestClient, store: HistoryStore) -> None:
    resp = await client.post("/chat/message?stream=true", json={"message": "Hello"})

    assert resp.status == 200
    assert resp.headers["Content-Type"].startswith("text/event-stream")
    session_id = resp.headers["X-Session-Id"]
    body = await resp.text()
    assert body.startswith("[CALL_TO]\n\ndata: STANDARD_STRATEGY\n\n")
    assert body.endswith("[DONE]\n\n")
    assert body.count("[DONE]") == 1
    assert decode_text(body) == "Hello!"
    assert len(await store.read_ordered(session_id)) == 2


async def test_chat_stream_error(client: TestClient) -> None:
    resp = await client.post(
        "/chat/message?stream=true", json={"message": "Hello", "strategy": "limited"}
    )
    body = await resp.text()

    assert '[ERROR]\n\ndata: {"message": "Rate limit exceeded.' in body
    assert body.endswith("[DONE]\n\n")
    assert decode_text(body) == "Hel"


# -- Chat: validation ----------------------------------------------------------


async def test_missing_message(client: TestClient) -> None:
    resp = await client.post("/chat/message", json={})
    assert resp.status == 400
    assert (await resp.json())["error"] == "Message is required and cannot be empty."


async def test_blank_message(client: TestClient) -> None:
    resp = await client.post("/chat/message", json={"message": "   "})
    assert resp.status == 400


async def test_message_too_long(client: TestClient) -> None:
    resp = await client.post("/chat/message", json={"message": "x" * 1001})
    assert resp.status == 400
    assert (await resp.json())["error"] == "Message is too long. Max 1000 characters."


async def test_message_at_limit(client: TestClient) -> None:
    resp = await client.post("/chat/message", json={"message": "x" * 1000})
    assert resp.status == 200


async def test_invalid_json(client: TestClient) -> None:
    resp = await client.post(
        "/chat/message", data="{not json", headers={"Content-Type": "application/json"}
    )
    assert resp.status == 400
    assert await resp.json() == {
        "error": "Bad Request",
        "details": "Invalid JSON format in request body.",
    }


async def test_body_not_utf8(client: TestClient) -> None:
    resp = await client.post(
        "/chat/message", data=b"\xff\xfe{}", headers={"Content-Type": "application/json"}
    )
    assert resp.status == 400
    assert await resp.json() == {
        "error": "Bad Request",
        "details": "Invalid JSON format in request body.",
    }


async def test_unknown_strategy(client: TestClient, store: HistoryStore) -> None:
    resp = await client.post("/chat/message", json={"message": "Hi", "strategy": "agent"})
    assert resp.status == 400
    assert await store.list_conversations() == []


# -- Conversations -------------------------------------------------------------


async def test_conversation_lifecycle(client: TestClient) -> None:
    resp = await client.post("/conversations", json={"metadata": {"source": "widget"}})
    assert resp.status == 201
    created = await resp.json()
    conversation_id = created["id"]
    assert created["metadata"] == {"source": "widget"}

    resp = await client.patch(f"/conversations/{conversation_id}", json={"title": "Orders"})
    assert resp.status == 200
    assert (await resp.json())["title"] == "Orders"

    resp = await client.get(f"/conversations/{conversation_id}")
    fetched = await resp.json()
    assert fetched["title"] == "Orders"
    assert fetched["messages"] == []

    resp = await client.get("/conversations")
    listing = await resp.json()
    assert [c["id"] for c in listing["conversations"]] == [conversation_id]

    resp = await client.delete(f"/conversations/{conversation_id}")
    assert resp.status == 204
    resp = await client.get(f"/conversations/{conversation_id}")
    assert resp.status == 404


async def test_create_conversation_without_body(client: TestClient) -> None:
    resp = await client.post("/conversations")
    assert resp.status == 201


async def test_conversation_includes_messages(client: TestClient) -> None:
    chat = await (await client.post("/chat/message", json={"message": "Hello"})).json()

    resp = await client.get(f"/conversations/{chat['sessionId']}")
    data = await resp.json()
    assert [(m["sender"], m["content"]) for m in data["messages"]] == [
        ("user", "Hello"),
        ("ai", "Hello!"),
    ]


async def test_missing_conversation_routes(client: TestClient) -> None:
    assert (await client.get("/conversations/nope")).status == 404
    assert (await client.delete("/conversations/nope")).status == 404
    assert (await client.patch("/conversations/nope", json={"title": "x"})).status == 404


async def test_list_limit_validation(client: TestClient) -> None:
    assert (await client.get("/conversations?limit=101")).status == 400
    assert (await client.get("/conversations?offset=-1")).status == 400
    assert (await client.get("/conversations?limit=abc")).status == 400


async def test_blank_title_rejected(client: TestClient) -> None:
    created = await (await client.post("/conversations")).json()
    resp = await client.patch(f"/conversations/{created['id']}", json={"title": "  "})
    assert resp.status == 400


# -- Errors --------------------------------------------------------------------


async def test_unhandled_error_returns_500(client: TestClient, store: HistoryStore) -> None:
    with patch.object(store, "create_conversation", AsyncMock(side_effect=RuntimeError("db"))):
        resp = await client.post("/conversations")

    assert resp.status == 500
    assert await resp.json() == {
        "error": "Internal Server Error",
        "details": "An unexpected error occurred on the server.",
    }
