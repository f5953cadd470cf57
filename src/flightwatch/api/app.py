"""FastAPI host app: runs the background loops for the life of the server."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from flightwatch.config import load_config
from flightwatch.runtime import FlightWatch, prepare_database

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    watch: FlightWatch | None = app.state.watch
    if watch is None:
        config = load_config(os.environ.get("FLIGHTWATCH_CONFIG"))
        prepare_database(config)
        watch = FlightWatch(config)
        app.state.watch = watch

    watch.start()
    logger.info("Background loops started")
    try:
        yield
    finally:
        watch.stop()
        logger.info("Background loops stopped")


def create_app(watch: FlightWatch | None = None) -> FastAPI:
    """Create the app; a prebuilt ``watch`` skips loading settings at startup."""
    load_dotenv()

    app = FastAPI(
        title="FlightWatch",
        description="Flight change detection and notification dispatch",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.watch = watch

    @app.get("/health")
    def health():
        current = app.state.watch
        return {
            "status": "ok",
            "poller_running": bool(current and current.poller.is_running),
            "queue_running": bool(current and current.queue.is_running),
        }

    @app.get("/stats")
    def stats():
        current = app.state.watch
        return current.stats() if current is not None else {}

    return app


app = create_app()
