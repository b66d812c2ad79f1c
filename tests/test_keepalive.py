"""Tests for the self-ping keep-alive loop."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, patch

import httpx
import pytest

from spurchat.keepalive import keepalive_loop, ping_once, ping_url, start_keepalive


@pytest.fixture
def _urls(monkeypatch: pytest.MonkeyPatch):
    """Clear both ping URLs; tests set the one they need."""
    monkeypatch.setattr("spurchat.keepalive.settings.render_external_url", "")
    monkeypatch.setattr("spurchat.keepalive.settings.self_ping_url", "")


# -- ping_url ------------------------------------------------------------------


def test_no_url_configured(_urls) -> None:
    assert ping_url() is None


def test_render_url_preferred(_urls, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "spurchat.keepalive.settings.render_external_url", "https://app.onrender.com/"
    )
    monkeypatch.setattr("spurchat.keepalive.settings.self_ping_url", "https://other.example")
    assert ping_url() == "https://app.onrender.com/ping"


def test_scheme_added(_urls, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("spurchat.keepalive.settings.self_ping_url", "chat.example")
    assert ping_url() == "https://chat.example/ping"


# -- ping_once -----------------------------------------------------------------


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def test_ping_success() -> None:
    async with _client(lambda request: httpx.Response(200, text="pong")) as client:
        assert await ping_once(client, "https://chat.example/ping") is True


async def test_ping_bad_status() -> None:
    async with _client(lambda request: httpx.Response(503)) as client:
        assert await ping_once(client, "https://chat.example/ping") is False


async def test_ping_network_error_does_not_raise() -> None:
    def handler(request):
        msg = "refused"
        raise httpx.ConnectError(msg, request=request)

    async with _client(handler) as client:
        assert await ping_once(client, "https://chat.example/ping") is False


# -- Loop ----------------------------------------------------------------------


async def test_loop_pings_until_cancelled() -> None:
    pinged_twice = asyncio.Event()
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        if len(seen) >= 2:
            pinged_twice.set()
        return httpx.Response(200, text="pong")

    async with _client(handler) as client:
        task = asyncio.create_task(keepalive_loop("https://chat.example/ping", 0, client))
        await asyncio.wait_for(pinged_twice.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not client.is_closed

    assert len(seen) >= 2
    assert set(seen) == {"https://chat.example/ping"}


async def test_loop_opens_its_own_client() -> None:
    pinged = asyncio.Event()

    async def fake_ping(client: httpx.AsyncClient, url: str) -> bool:
        assert isinstance(client, httpx.AsyncClient)
        pinged.set()
        return True

    with patch("spurchat.keepalive.ping_once", side_effect=fake_ping):
        task = asyncio.create_task(keepalive_loop("https://chat.example/ping", 0))
        await asyncio.wait_for(pinged.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


async def test_start_skipped_without_url(_urls) -> None:
    assert start_keepalive() is None


async def test_start_returns_task(_urls, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("spurchat.keepalive.settings.self_ping_url", "https://chat.example")
    loop = MagicMock(return_value=asyncio.sleep(0))

    with patch("spurchat.keepalive.keepalive_loop", loop):
        task = start_keepalive()

    assert task is not None
    await task
    loop.assert_called_once_with("https://chat.example/ping", 90.0)
