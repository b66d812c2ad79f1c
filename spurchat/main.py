"""Spur chat entry point."""

import logging
import sys

from aiohttp import web

from spurchat.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Validate configuration and serve the HTTP API."""
    missing = settings.missing_required()
    if missing:
        logger.error("Missing required environment variables: %s", ", ".join(missing))
        sys.exit(1)

    from spurchat.server import create_app

    logger.info(
        "Starting Spur chat on %s:%d with model %s (origins: %s)",
        settings.host,
        settings.port,
        settings.chat_model,
        ", ".join(settings.get_allowed_origins()),
    )
    web.run_app(create_app(), host=settings.host, port=settings.port, print=None)


if __name__ == "__main__":
    main()
