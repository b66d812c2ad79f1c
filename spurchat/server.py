"""aiohttp application: chat endpoint, conversation routes, health checks.

``POST /chat/message?stream=true`` answers as ``text/event-stream`` with
the frames from :mod:`spurchat.protocol`; without ``stream=true`` the reply
is collected and returned as JSON.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from datetime import UTC, datetime
from typing import Any

from aiohttp import web

from spurchat.config import settings
from spurchat.history.store import ConversationNotFoundError, HistoryStore
from spurchat.keepalive import start_keepalive
from spurchat.orchestrator import ChatOrchestrator
from spurchat.protocol import Frame, FrameKind, encode_frame, error_frames
from spurchat.strategies.base import StrategyKind
from spurchat.strategies.registry import StrategyRegistry, build_default_registry
from spurchat.tasks import BackgroundTasks

logger = logging.getLogger(__name__)

STORE_KEY = web.AppKey("store", HistoryStore)
REGISTRY_KEY = web.AppKey("registry", StrategyRegistry)
TASKS_KEY = web.AppKey("tasks", BackgroundTasks)

ANONYMOUS_USER = "anonymous"
MAX_PAGE_SIZE = 100
MAX_TITLE_LENGTH = 200


class _BadRequest(Exception):
    """Validation failure reported as a 400."""

    def __init__(self, error: str, details: str | None = None) -> None:
        super().__init__(error)
        self.error = error
        self.details = details


def _error(message: str, status: int, **extra: Any) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


async def _json_body(request: web.Request, *, required: bool = True) -> dict[str, Any]:
    if not required and not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise _BadRequest("Bad Request", "Invalid JSON format in request body.") from exc
    if not isinstance(body, dict):
        msg = "Request body must be a JSON object."
        raise _BadRequest(msg)
    return body


def _validate_message(body: dict[str, Any]) -> str:
    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        msg = "Message is required and cannot be empty."
        raise _BadRequest(msg)
    trimmed = message.strip()
    if len(trimmed) > settings.max_message_length:
        msg = f"Message is too long. Max {settings.max_message_length} characters."
        raise _BadRequest(msg)
    return trimmed


# -- Middleware ----------------------------------------------------------------


@web.middleware
async def _error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Turn validation errors into 400s and anything unhandled into a JSON 500."""
    try:
        return await handler(request)
    except _BadRequest as exc:
        logger.warning("Bad request %s %s: %s", request.method, request.path, exc.details or exc)
        if exc.details:
            return _error(exc.error, 400, details=exc.details)
        return _error(exc.error, 400)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error: %s %s", request.method, request.path)
        return _error(
            "Internal Server Error",
            500,
            details="An unexpected error occurred on the server.",
        )


async def _add_cors_headers(request: web.Request, response: web.StreamResponse) -> None:
    allowed = settings.get_allowed_origins()
    origin = request.headers.get("Origin", "")
    if "*" in allowed:
        response.headers["Access-Control-Allow-Origin"] = "*"
    elif origin in allowed:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Vary"] = "Origin"
    else:
        return
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, PUT, DELETE, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"


# -- Health --------------------------------------------------------------------


async def _ping(request: web.Request) -> web.Response:
    return web.Response(text="pong")


async def _health(request: web.Request) -> web.Response:
    """GET /health: basic liveness check."""
    return web.json_response({"status": "ok", "timestamp": datetime.now(UTC).isoformat()})


async def _preflight(request: web.Request) -> web.Response:
    return web.Response(status=204)


# -- Chat ----------------------------------------------------------------------


async def _resolve_conversation(store: HistoryStore, session_id: Any) -> str:
    """Reuse the session's conversation if it exists, otherwise start a new one."""
    if isinstance(session_id, str) and session_id:
        existing = await store.get_conversation(session_id, with_messages=False)
        if existing is not None:
            return existing.id
        logger.debug("Unknown sessionId %s, starting a new conversation", session_id)
    conversation = await store.create_conversation()
    return conversation.id


async def _handle_chat_message(request: web.Request) -> web.StreamResponse:
    """POST /chat/message: run one user message through the pipeline."""
    body = await _json_body(request)
    message = _validate_message(body)

    registry = request.app[REGISTRY_KEY]
    kind = body.get("strategy") or StrategyKind.STANDARD
    if not isinstance(kind, str) or kind not in registry:
        msg = f"Unknown strategy: {kind}"
        raise _BadRequest(msg)

    store = request.app[STORE_KEY]
    conversation_id = await _resolve_conversation(store, body.get("sessionId"))
    logger.info("Chat message for %s: %s", conversation_id, message[:100])

    orchestrator = ChatOrchestrator(
        store, registry, request.app[TASKS_KEY], ANONYMOUS_USER, conversation_id
    )
    frames = orchestrator.process_message(message, kind)

    if request.query.get("stream") == "true":
        return await _stream_frames(request, frames, conversation_id)
    return await _collect_frames(frames, conversation_id)


async def _stream_frames(
    request: web.Request, frames: AsyncGenerator[Frame, None], conversation_id: str
) -> web.StreamResponse:
    response = web.StreamResponse(
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Session-Id": conversation_id,
        }
    )
    await response.prepare(request)

    try:
        async with contextlib.aclosing(frames):
            async for frame in frames:
                await response.write(encode_frame(frame).encode("utf-8"))
    except ConnectionResetError:
        logger.info("Client disconnected from %s mid-stream", conversation_id)
        return response
    except Exception:
        logger.exception("Streaming response error for %s", conversation_id)
        for frame in error_frames("Internal server error."):
            await response.write(encode_frame(frame).encode("utf-8"))

    await response.write_eof()
    logger.info("Streaming response completed for %s", conversation_id)
    return response


async def _collect_frames(frames: AsyncIterator[Frame], conversation_id: str) -> web.Response:
    parts: list[str] = []
    error: str | None = None
    try:
        async for frame in frames:
            if frame.kind is FrameKind.DATA:
                parts.append(frame.payload)
            elif frame.kind is FrameKind.ERROR:
                error = frame.payload
    except Exception:
        logger.exception("Non-streaming response error for %s", conversation_id)
        return _error("Failed to generate response.", 500)

    if error is not None:
        return _error(error, 502, sessionId=conversation_id)
    reply = "".join(parts)
    logger.info("Response completed for %s (%d chars)", conversation_id, len(reply))
    return web.json_response({"reply": reply, "sessionId": conversation_id})


# -- Conversations -------------------------------------------------------------


def _int_param(request: web.Request, name: str, default: int, maximum: int | None = None) -> int:
    raw = request.query.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = -1
    if value < 0 or (maximum is not None and value > maximum):
        bound = f"between 0 and {maximum}" if maximum is not None else "a non-negative integer"
        msg = f"'{name}' must be {bound}."
        raise _BadRequest(msg)
    return value


async def _create_conversation(request: web.Request) -> web.Response:
    body = await _json_body(request, required=False)
    metadata = body.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        msg = "'metadata' must be an object."
        raise _BadRequest(msg)
    conversation = await request.app[STORE_KEY].create_conversation(metadata)
    return web.json_response(conversation.model_dump(mode="json"), status=201)


async def _list_conversations(request: web.Request) -> web.Response:
    limit = _int_param(request, "limit", 20, MAX_PAGE_SIZE)
    offset = _int_param(request, "offset", 0)
    conversations = await request.app[STORE_KEY].list_conversations(limit=limit, offset=offset)
    return web.json_response(
        {
            "conversations": [
                c.model_dump(mode="json", exclude={"messages"}) for c in conversations
            ],
            "limit": limit,
            "offset": offset,
        }
    )


async def _get_conversation(request: web.Request) -> web.Response:
    conversation_id = request.match_info["conversation_id"]
    conversation = await request.app[STORE_KEY].get_conversation(conversation_id)
    if conversation is None:
        return _error("Conversation not found.", 404)
    return web.json_response(conversation.model_dump(mode="json"))


async def _update_conversation(request: web.Request) -> web.Response:
    conversation_id = request.match_info["conversation_id"]
    body = await _json_body(request)
    title = body.get("title")
    if not isinstance(title, str) or not title.strip():
        msg = "Title is required and cannot be empty."
        raise _BadRequest(msg)
    if len(title.strip()) > MAX_TITLE_LENGTH:
        msg = f"Title is too long. Max {MAX_TITLE_LENGTH} characters."
        raise _BadRequest(msg)
    try:
        conversation = await request.app[STORE_KEY].update_title(conversation_id, title.strip())
    except ConversationNotFoundError:
        return _error("Conversation not found.", 404)
    return web.json_response(conversation.model_dump(mode="json", exclude={"messages"}))


async def _delete_conversation(request: web.Request) -> web.Response:
    conversation_id = request.match_info["conversation_id"]
    if not await request.app[STORE_KEY].delete_conversation(conversation_id):
        return _error("Conversation not found.", 404)
    return web.Response(status=204)


# -- App -----------------------------------------------------------------------


async def _background(app: web.Application) -> AsyncIterator[None]:
    """Start the keep-alive loop; on shutdown, stop it and flush background tasks."""
    keepalive = start_keepalive()
    yield
    if keepalive is not None:
        keepalive.cancel()
        with contextlib.suppress(BaseException):
            await keepalive
    await app[TASKS_KEY].drain()
    await app[STORE_KEY].cache.close()


def create_app(
    store: HistoryStore | None = None,
    registry: StrategyRegistry | None = None,
    tasks: BackgroundTasks | None = None,
) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[_error_middleware])
    app[STORE_KEY] = store or HistoryStore.get()
    app[REGISTRY_KEY] = registry or build_default_registry()
    app[TASKS_KEY] = tasks or BackgroundTasks()

    app.router.add_get("/ping", _ping)
    app.router.add_get("/health", _health)
    app.router.add_post("/chat/message", _handle_chat_message)
    app.router.add_post("/conversations", _create_conversation)
    app.router.add_get("/conversations", _list_conversations)
    app.router.add_get("/conversations/{conversation_id}", _get_conversation)
    app.router.add_patch("/conversations/{conversation_id}", _update_conversation)
    app.router.add_delete("/conversations/{conversation_id}", _delete_conversation)
    app.router.add_route("OPTIONS", "/{tail:.*}", _preflight)

    app.on_response_prepare.append(_add_cors_headers)
    app.cleanup_ctx.append(_background)
    return app
