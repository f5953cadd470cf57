"""Composition root and process entry point."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from dataclasses import asdict
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy.orm import Session, sessionmaker

from flightwatch.config import WatchConfig, load_config
from flightwatch.db.engine import get_engine, init_db
from flightwatch.errors import ConfigError
from flightwatch.fetch.provider import AeroApiProvider, FlightDataProvider
from flightwatch.notify.gateway import HttpPushGateway, LoggingPushGateway, PushGateway
from flightwatch.notify.queue import NotificationQueue
from flightwatch.poller import FlightPoller

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
SHUTDOWN_TIMEOUT_SECONDS = 30.0


def configure_logging(level: str | int = "INFO") -> None:
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)


def build_gateway(config: WatchConfig) -> PushGateway:
    if config.push_gateway_url:
        return HttpPushGateway(config.push_gateway_url, timeout=config.push_timeout_seconds)
    logger.warning("No push gateway configured; notifications will only be logged")
    return LoggingPushGateway()


class FlightWatch:
    """Owns the poller and the notification queue for one process.

    Only one instance per deployment should run the loops; nothing here
    coordinates between processes.
    """

    def __init__(
        self,
        config: WatchConfig,
        provider: FlightDataProvider | None = None,
        gateway: PushGateway | None = None,
        session_factory: sessionmaker[Session] | None = None,
    ):
        self.config = config
        self.provider = provider or AeroApiProvider(
            config.provider_api_key,
            base_url=config.provider_base_url,
            timeout=config.provider_timeout_seconds,
        )
        self.gateway = gateway or build_gateway(config)
        self.queue = NotificationQueue(
            self.gateway,
            session_factory=session_factory,
            max_concurrency=config.max_concurrency,
            dispatch_interval=config.dispatch_interval_seconds,
            max_queue_size=config.max_queue_size,
            platforms=config.push_platforms,
        )
        self.poller = FlightPoller(
            self.provider,
            self.queue,
            session_factory=session_factory,
            interval=config.poll_interval_seconds,
        )

    def start(self) -> None:
        self.queue.start()
        self.poller.start()

    def stop(self, timeout: float | None = SHUTDOWN_TIMEOUT_SECONDS) -> bool:
        """Stop both loops and wait for in-flight deliveries.

        Returns False if deliveries were still running after ``timeout``.
        """
        if self.poller.is_running:
            self.poller.stop(timeout)
        if self.queue.is_running:
            self.queue.stop()
        idle = self.queue.wait_idle(timeout)
        if not idle:
            logger.warning("Deliveries still in flight after %ss", timeout)
        return idle

    def run_once(self, timeout: float | None = SHUTDOWN_TIMEOUT_SECONDS) -> None:
        """Poll once, then drain the queue without starting the loops."""
        self.poller.poll_once()
        while self.queue.get_stats()["queue_size"]:
            if not self.queue.dispatch_tick():
                self.queue.wait_idle(timeout)
        self.queue.wait_idle(timeout)

    def stats(self) -> dict:
        last = self.poller.last_result
        return {
            "poller": {
                "running": self.poller.is_running,
                "interval_seconds": self.poller.interval,
                "last_result": asdict(last) if last is not None else None,
            },
            "queue": self.queue.get_stats(),
        }


def prepare_database(config: WatchConfig) -> None:
    """Bind the engine; in development also create the tables."""
    engine = get_engine(config.database_url)
    if os.environ.get("ENVIRONMENT", "development") == "development":
        init_db(engine)


def main() -> None:
    """CLI entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="flightwatch",
        description="Poll tracked flights and push change alerts",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help="YAML settings file overriding the environment",
    )
    parser.add_argument(
        "--once", action="store_true",
        help="Run a single poll cycle, deliver its notifications, and exit",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    configure_logging("DEBUG" if args.verbose else config.log_level)

    prepare_database(config)
    watch = FlightWatch(config)

    if args.once:
        watch.run_once()
        return

    stop_requested = threading.Event()

    def _request_stop(signum, _frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        stop_requested.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    watch.start()
    stop_requested.wait()
    watch.stop()


if __name__ == "__main__":
    main()
