"""
Integration tests for the transactional outbox publisher.
"""
import uuid
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, List

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from payment_service.core.outbox import OutboxPublisher
from payment_service.database.connection import create_session_factory, init_db
from payment_service.database.models import OutboxEvent
from payment_service.domain.models import utcnow


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'outbox.db'}")
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


async def add_events(
    session_factory: async_sessionmaker[AsyncSession], *event_types: str
) -> None:
    async with session_factory() as db:
        for event_type in event_types:
            db.add(
                OutboxEvent(
                    aggregate_id=uuid.uuid4(),
                    aggregate_type="payment",
                    event_type=event_type,
                    payload={"event": event_type},
                    published=False,
                    created_at=utcnow(),
                )
            )
        await db.commit()


class TestOutboxPublisher:
    """Test suite for OutboxPublisher."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_publishes_in_insertion_order(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await add_events(session_factory, "payment.pending", "payment.succeeded")
        published: List[Dict[str, Any]] = []

        async def collect(event: Dict[str, Any]) -> None:
            published.append(event)

        publisher = OutboxPublisher(collect, session_factory=session_factory)

        assert await publisher.process_batch() == 2
        assert [e["event_type"] for e in published] == ["payment.pending", "payment.succeeded"]
        assert published[0]["payload"] == {"event": "payment.pending"}
        assert await publisher.get_pending_count() == 0
        assert await publisher.process_batch() == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failed_publish_is_retried(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await add_events(session_factory, "payment.succeeded", "refund.succeeded")

        async def flaky(event: Dict[str, Any]) -> None:
            if event["event_type"] == "refund.succeeded":
                raise ConnectionError("broker unavailable")

        publisher = OutboxPublisher(flaky, session_factory=session_factory)

        assert await publisher.process_batch() == 1
        assert await publisher.get_pending_count() == 1

        async with session_factory() as db:
            rows = (await db.execute(select(OutboxEvent).order_by(OutboxEvent.id))).scalars().all()
        assert [r.published for r in rows] == [True, False]
        assert rows[0].published_at is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_batch_size_limits_work(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await add_events(session_factory, *[f"payment.e{i}" for i in range(5)])
        publisher = OutboxPublisher(session_factory=session_factory, batch_size=2)

        assert await publisher.process_batch() == 2
        assert await publisher.get_pending_count() == 3

    @pytest.mark.unit
    def test_stop(self) -> None:
        publisher = OutboxPublisher(session_factory=None)
        publisher._running = True
        publisher.stop()
        assert publisher._running is False
