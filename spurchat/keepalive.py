"""Self-ping loop that keeps free-tier hosts from idling the service out.

Pings ``<RENDER_EXTERNAL_URL or SELF_PING_URL>/ping`` every
``keepalive_interval_seconds``. With neither URL set, nothing runs.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from spurchat.config import settings

logger = logging.getLogger(__name__)


def ping_url() -> str | None:
    """The URL to ping, or None when self-ping is not configured."""
    base = settings.render_external_url or settings.self_ping_url
    if not base:
        return None
    if not base.startswith(("http://", "https://")):
        base = f"https://{base}"
    return f"{base.rstrip('/')}/ping"


async def ping_once(client: httpx.AsyncClient, url: str) -> bool:
    """Send one ping. Returns True on a 2xx response; never raises."""
    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        logger.error("Keep-alive ping to %s failed: %s", url, exc)
        return False
    if response.is_success:
        logger.debug("Keep-alive ping ok")
        return True
    logger.warning("Keep-alive ping failed with status %d", response.status_code)
    return False


async def keepalive_loop(
    url: str, interval: float, client: httpx.AsyncClient | None = None
) -> None:
    """Ping *url* every *interval* seconds until cancelled.

    Opens its own client unless one is passed in; a passed client is not closed.
    """
    if client is None:
        async with httpx.AsyncClient(timeout=10.0) as owned:
            await keepalive_loop(url, interval, owned)
        return
    while True:
        await asyncio.sleep(interval)
        await ping_once(client, url)


def start_keepalive() -> asyncio.Task | None:
    """Spawn the keep-alive loop as a fire-and-forget task.

    Returns the task (useful for testing) or None when no URL is configured.
    """
    url = ping_url()
    if url is None:
        logger.info("Keep-alive: no RENDER_EXTERNAL_URL or SELF_PING_URL set, skipping")
        return None
    interval = settings.keepalive_interval_seconds
    task = asyncio.ensure_future(keepalive_loop(url, interval))
    logger.info("Keep-alive: pinging %s every %.0fs", url, interval)
    return task
