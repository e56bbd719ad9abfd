"""
Integration tests for the SQLAlchemy Ledger Store (SQLite via aiosqlite).
"""
import uuid
from dataclasses import replace
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from conftest import FakeProvider, make_payment_request
from payment_service.config import Settings
from payment_service.core.orchestrator import PaymentOrchestrator
from payment_service.database.connection import create_session_factory, init_db
from payment_service.database.ledger import (
    DuplicateOrderError,
    DuplicatePaymentMethodError,
    PaymentNotRefundableError,
    RefundBalanceExceeded,
)
from payment_service.database.models import OutboxEvent
from payment_service.database.sql_ledger import SqlLedgerStore
from payment_service.domain.models import (
    CallContext,
    OutboxMessage,
    PaymentMethodRecord,
    PaymentRecord,
    PaymentStatus,
    RefundRecord,
    RefundRequest,
    RefundStatus,
)
from payment_service.domain.results import ErrorCode
from payment_service.providers.registry import ProviderRegistry


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """Fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def sql_ledger(session_factory: async_sessionmaker[AsyncSession]) -> SqlLedgerStore:
    return SqlLedgerStore(session_factory)


def pending_payment(order_id: str = "ORD-1", amount: str = "100.00") -> PaymentRecord:
    return PaymentRecord(
        id=uuid.uuid4(),
        order_id=order_id,
        customer_id="cust_1",
        amount=Decimal(amount),
        currency="USD",
        provider="fake",
        payment_method="card",
        status=PaymentStatus.PENDING,
        correlation_id="corr-1",
        metadata={"source": "test"},
    )


def pending_refund(payment: PaymentRecord, amount: str) -> RefundRecord:
    return RefundRecord(
        id=uuid.uuid4(),
        payment_id=payment.id,
        amount=Decimal(amount),
        currency=payment.currency,
        status=RefundStatus.PENDING,
        correlation_id="corr-1",
    )


def method(token: str, is_default: bool = False) -> PaymentMethodRecord:
    return PaymentMethodRecord(
        id=uuid.uuid4(),
        customer_id="cust_1",
        provider="fake",
        provider_token_id=token,
        method_type="card",
        is_default=is_default,
    )


async def succeed(ledger: SqlLedgerStore, payment: PaymentRecord) -> PaymentRecord:
    await ledger.create_payment(payment)

    succeeded = replace(payment, status=PaymentStatus.SUCCEEDED)
    await ledger.update_payment(succeeded)
    return succeeded


class TestSqlPayments:
    """Payment rows."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_and_get(self, sql_ledger: SqlLedgerStore) -> None:
        payment = pending_payment()
        await sql_ledger.create_payment(payment)

        loaded = await sql_ledger.get_payment(payment.id)
        assert loaded.order_id == "ORD-1"
        assert loaded.amount == Decimal("100.00")
        assert loaded.status == PaymentStatus.PENDING
        assert loaded.metadata == {"source": "test"}
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_live_order_index_rejects_second_payment(
        self, sql_ledger: SqlLedgerStore
    ) -> None:
        await sql_ledger.create_payment(pending_payment())
        with pytest.raises(DuplicateOrderError):
            await sql_ledger.create_payment(pending_payment())

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failed_payment_frees_the_order(self, sql_ledger: SqlLedgerStore) -> None:
        first = pending_payment()
        await sql_ledger.create_payment(first)
        await sql_ledger.update_payment(replace(first, status=PaymentStatus.FAILED))

        second = pending_payment()
        await sql_ledger.create_payment(second)
        assert (await sql_ledger.get_payment_by_order("ORD-1")).id == second.id

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_writes_outbox_event(
        self,
        sql_ledger: SqlLedgerStore,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        payment = pending_payment()
        await sql_ledger.create_payment(payment)
        await sql_ledger.update_payment(
            replace(payment, status=PaymentStatus.SUCCEEDED, metadata={"charge": "ch_1"}),
            OutboxMessage(
                aggregate_id=payment.id,
                aggregate_type="payment",
                event_type="payment.succeeded",
                payload={"payment_id": str(payment.id)},
            ),
        )

        found = await sql_ledger.find_succeeded_payment("ORD-1")
        assert found.metadata == {"charge": "ch_1"}

        async with session_factory() as db:
            events = (await db.execute(select(OutboxEvent))).scalars().all()
        assert [e.event_type for e in events] == ["payment.succeeded"]
        assert events[0].published is False

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_missing_payment(self, sql_ledger: SqlLedgerStore) -> None:
        with pytest.raises(LookupError):
            await sql_ledger.update_payment(pending_payment())

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_payments(self, sql_ledger: SqlLedgerStore) -> None:
        for i in range(3):
            await sql_ledger.create_payment(pending_payment(order_id=f"ORD-{i}"))

        rows = await sql_ledger.list_payments(customer_id="cust_1", skip=0, take=2)
        assert [p.order_id for p in rows] == ["ORD-2", "ORD-1"]
        assert await sql_ledger.list_payments(order_id="ORD-0") != []
        assert await sql_ledger.list_payments(customer_id="nobody") == []


class TestSqlRefunds:
    """Refund reservation under the payment row lock."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_reserved_refunds_count_against_balance(
        self, sql_ledger: SqlLedgerStore
    ) -> None:
        payment = await succeed(sql_ledger, pending_payment())

        await sql_ledger.create_refund_within_balance(pending_refund(payment, "80.00"))
        with pytest.raises(RefundBalanceExceeded) as exc:
            await sql_ledger.create_refund_within_balance(pending_refund(payment, "30.00"))
        assert exc.value.refunded_total == Decimal("80.00")

        await sql_ledger.create_refund_within_balance(pending_refund(payment, "20.00"))

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failed_refund_releases_balance(self, sql_ledger: SqlLedgerStore) -> None:
        payment = await succeed(sql_ledger, pending_payment())
        refund = pending_refund(payment, "100.00")
        await sql_ledger.create_refund_within_balance(refund)
        await sql_ledger.update_refund(replace(refund, status=RefundStatus.FAILED))

        await sql_ledger.create_refund_within_balance(pending_refund(payment, "100.00"))

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_refunded_total_counts_succeeded_only(
        self, sql_ledger: SqlLedgerStore
    ) -> None:
        payment = await succeed(sql_ledger, pending_payment())
        done = pending_refund(payment, "40.00")
        await sql_ledger.create_refund_within_balance(done)
        await sql_ledger.update_refund(replace(done, status=RefundStatus.SUCCEEDED))
        await sql_ledger.create_refund_within_balance(pending_refund(payment, "10.00"))

        assert await sql_ledger.refunded_total(payment.id) == Decimal("40.00")
        loaded = await sql_ledger.get_payment(payment.id)
        assert len(loaded.refunds) == 2
        assert loaded.refunded_amount == Decimal("40.00")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_pending_payment_is_not_refundable(self, sql_ledger: SqlLedgerStore) -> None:
        payment = pending_payment()
        await sql_ledger.create_payment(payment)
        with pytest.raises(PaymentNotRefundableError):
            await sql_ledger.create_refund_within_balance(pending_refund(payment, "1.00"))


class TestSqlPaymentMethods:
    """Stored methods and the single-default index."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_default_swap(self, sql_ledger: SqlLedgerStore) -> None:
        first = method("pm_1", is_default=True)
        second = method("pm_2", is_default=True)
        await sql_ledger.create_payment_method(first)
        await sql_ledger.create_payment_method(second)
        await sql_ledger.create_payment_method(method("pm_3"))

        methods = await sql_ledger.list_payment_methods("cust_1")
        assert len(methods) == 3
        assert methods[0].id == second.id
        assert [m.id for m in methods if m.is_default] == [second.id]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_token(self, sql_ledger: SqlLedgerStore) -> None:
        await sql_ledger.create_payment_method(method("pm_1"))
        with pytest.raises(DuplicatePaymentMethodError):
            await sql_ledger.create_payment_method(method("pm_1", is_default=True))

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_delete(self, sql_ledger: SqlLedgerStore) -> None:
        saved = method("pm_1")
        await sql_ledger.create_payment_method(saved)

        assert await sql_ledger.get_payment_method(saved.id) is not None
        assert await sql_ledger.delete_payment_method(saved.id)
        assert await sql_ledger.get_payment_method(saved.id) is None
        assert not await sql_ledger.delete_payment_method(saved.id)


class TestOrchestratorOnSql:
    """End-to-end flows against the SQL store."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_payment_and_refunds(
        self, sql_ledger: SqlLedgerStore, test_settings: Settings
    ) -> None:
        orchestrator = PaymentOrchestrator(
            sql_ledger, ProviderRegistry([FakeProvider()], default_provider="fake"), test_settings
        )
        ctx = CallContext.new("tester")

        paid = await orchestrator.process_payment(make_payment_request(), ctx)
        assert paid.is_success
        duplicate = await orchestrator.process_payment(make_payment_request(), ctx)
        assert duplicate.error_code == ErrorCode.DUPLICATE_PAYMENT

        amounts = ["40.00", "40.00", "30.00"]
        results = [
            await orchestrator.process_refund(
                RefundRequest(payment_id=paid.payment_id, amount=Decimal(a)), ctx
            )
            for a in amounts
        ]
        assert [r.is_success for r in results] == [True, True, False]
        assert results[2].error_code == ErrorCode.REFUND_EXCEEDS_BALANCE
        assert await orchestrator.refunded_total(paid.payment_id) == Decimal("80.00")
