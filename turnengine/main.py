"""Turn engine entry point."""

import asyncio
import contextlib
import logging
import signal

from turnengine.config import settings
from turnengine.server import TurnServer
from turnengine.services import ServiceBundle

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


async def _run() -> None:
    services = ServiceBundle.from_settings(settings)
    server = TurnServer(services, settings.server_host, settings.server_port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    await server.start()
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        await server.stop()
        await services.aclose()


def main() -> None:
    """Serve turns until interrupted."""
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is empty — model calls will fail")
    logger.info("Starting turn engine with model %s...", settings.chat_model)
    asyncio.run(_run())


if __name__ == "__main__":
    main()
