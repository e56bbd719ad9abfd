"""
Outbox publisher background worker.

Continuously polls the outbox table and publishes payment events.
"""
import asyncio
import signal
from typing import Any, Dict

import structlog

from payment_service.config import get_settings
from payment_service.core.outbox import OutboxPublisher
from payment_service.database.connection import close_db
from payment_service.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def publish_to_message_queue(event_data: Dict[str, Any]) -> None:
    """
    Publish one event.

    Events are emitted as structured log records; a broker-backed publisher
    can be passed to ``OutboxPublisher`` instead.
    """
    logger.info(
        "event_published_to_queue",
        event_type=event_data.get("event_type"),
        aggregate_type=event_data.get("aggregate_type"),
        aggregate_id=event_data.get("aggregate_id"),
        payload=event_data.get("payload"),
    )


async def start_outbox_publisher() -> None:
    """
    Start the outbox publisher worker.

    Runs until SIGINT/SIGTERM.
    """
    settings = get_settings()
    setup_logging(settings)

    logger.info("outbox_publisher_worker_starting")

    publisher = OutboxPublisher(
        publisher_func=publish_to_message_queue,
        batch_size=settings.outbox_batch_size,
        poll_interval_seconds=settings.outbox_poll_interval_seconds,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, publisher.stop)

    try:
        await publisher.start()
    except Exception as e:
        logger.error("outbox_publisher_worker_error", error=str(e))
        raise
    finally:
        await close_db()
        logger.info("outbox_publisher_worker_stopped")


def main() -> None:
    asyncio.run(start_outbox_publisher())


if __name__ == "__main__":
    main()
