"""Entry point for the FX RFQ desk.

Builds the Desk, embeds it in the FastAPI application, and serves both
from a single asyncio event loop via uvicorn's programmatic API. The
FastAPI lifespan starts the desk's background loops (candle sampling,
maker quoting, maker auto-funding) and stops them on shutdown.

With the API disabled (API_ENABLED=false) the desk's loops run on their
own until SIGINT/SIGTERM.
"""

import asyncio
import signal
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from rfq.config import AppSettings
from rfq.desk import Desk
from rfq.logging import get_logger, setup_logging


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Register SIGINT/SIGTERM to set ``stop_event``.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("rfq.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the desk on startup and stop it on shutdown."""
    logger = get_logger("rfq.main")
    desk: Desk = app.state.desk

    await desk.start()
    logger.info("lifespan_started")

    yield

    await desk.stop()
    logger.info("rfq_desk_stopped")


async def run() -> None:
    """Run the RFQ desk, with the REST API unless it is disabled."""
    settings = AppSettings()

    setup_logging(settings.log_level)
    logger = get_logger("rfq.main")

    desk = Desk(settings)
    if not desk.makers.agents:
        logger.warning(
            "no_maker_keys_configured",
            note="Set MAKER_BOT_PRIVATE_KEYS to run automated makers.",
        )

    if settings.api.enabled:
        from rfq.api.app import create_app

        app = create_app(lifespan=lifespan)
        app.state.desk = desk

        logger.info("starting_with_api", host=settings.api.host, port=settings.api.port)

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        stop_event = asyncio.Event()
        _setup_signal_handlers(stop_event)

        logger.info("starting_without_api")
        try:
            await desk.start()
            await stop_event.wait()
        finally:
            await desk.stop()
            logger.info("rfq_desk_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
