"""
Race condition tests for concurrent requests.

The provider sleeps during every call so concurrent flows interleave at the
point where they are waiting on the network.
"""
import asyncio
from decimal import Decimal

import pytest

from conftest import FakeProvider, make_payment_request
from payment_service.config import Settings
from payment_service.core.orchestrator import PaymentOrchestrator
from payment_service.database.memory_ledger import InMemoryLedgerStore
from payment_service.domain.models import (
    CallContext,
    MethodDetails,
    PaymentStatus,
    RefundRequest,
    SaveMethodRequest,
)
from payment_service.domain.results import ErrorCode
from payment_service.providers.registry import ProviderRegistry


@pytest.fixture
def slow_provider() -> FakeProvider:
    return FakeProvider(delay=0.01)


@pytest.fixture
def slow_orchestrator(
    ledger: InMemoryLedgerStore, slow_provider: FakeProvider, test_settings: Settings
) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        ledger, ProviderRegistry([slow_provider], default_provider="fake"), test_settings
    )


class TestRaceConditions:
    """Test suite for race condition scenarios."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_payments_for_same_order(
        self,
        slow_orchestrator: PaymentOrchestrator,
        ledger: InMemoryLedgerStore,
        slow_provider: FakeProvider,
    ) -> None:
        """Two simultaneous charges for ORD-1: exactly one reaches the provider."""
        results = await asyncio.gather(
            slow_orchestrator.process_payment(make_payment_request(), CallContext.new("a")),
            slow_orchestrator.process_payment(make_payment_request(), CallContext.new("b")),
        )

        succeeded = [r for r in results if r.is_success]
        rejected = [r for r in results if not r.is_success]
        assert len(succeeded) == 1
        assert len(rejected) == 1
        assert rejected[0].error_code == ErrorCode.DUPLICATE_PAYMENT
        assert rejected[0].error_message == "Payment already exists for this order"

        assert len(slow_provider.payment_calls) == 1
        assert len(ledger.payments) == 1

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_many_concurrent_payments_for_same_order(
        self,
        slow_orchestrator: PaymentOrchestrator,
        ledger: InMemoryLedgerStore,
    ) -> None:
        results = await asyncio.gather(
            *[
                slow_orchestrator.process_payment(make_payment_request(), CallContext.new())
                for _ in range(10)
            ]
        )

        assert sum(1 for r in results if r.is_success) == 1
        assert all(
            r.error_code == ErrorCode.DUPLICATE_PAYMENT for r in results if not r.is_success
        )
        statuses = [p.status for p in ledger.payments.values()]
        assert statuses == [PaymentStatus.SUCCEEDED]

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_payments_for_different_orders(
        self, slow_orchestrator: PaymentOrchestrator
    ) -> None:
        results = await asyncio.gather(
            *[
                slow_orchestrator.process_payment(
                    make_payment_request(order_id=f"ORD-{i}"), CallContext.new()
                )
                for i in range(5)
            ]
        )

        assert all(r.is_success for r in results)
        assert len({r.payment_id for r in results}) == 5

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_refunds_never_exceed_payment(
        self,
        slow_orchestrator: PaymentOrchestrator,
        slow_provider: FakeProvider,
    ) -> None:
        """100.00 payment, concurrent 80.00 and 30.00 refunds: only one fits."""
        paid = await slow_orchestrator.process_payment(make_payment_request(), CallContext.new())
        assert paid.is_success

        results = await asyncio.gather(
            slow_orchestrator.process_refund(
                RefundRequest(payment_id=paid.payment_id, amount=Decimal("80.00")),
                CallContext.new(),
            ),
            slow_orchestrator.process_refund(
                RefundRequest(payment_id=paid.payment_id, amount=Decimal("30.00")),
                CallContext.new(),
            ),
        )

        assert sum(1 for r in results if r.is_success) == 1
        (rejected,) = [r for r in results if not r.is_success]
        assert rejected.error_code == ErrorCode.REFUND_EXCEEDS_BALANCE
        assert len(slow_provider.refund_calls) == 1
        assert await slow_orchestrator.refunded_total(paid.payment_id) <= Decimal("100.00")

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_many_concurrent_partial_refunds(
        self, slow_orchestrator: PaymentOrchestrator
    ) -> None:
        paid = await slow_orchestrator.process_payment(make_payment_request(), CallContext.new())

        results = await asyncio.gather(
            *[
                slow_orchestrator.process_refund(
                    RefundRequest(payment_id=paid.payment_id, amount=Decimal("15.00")),
                    CallContext.new(),
                )
                for _ in range(10)
            ]
        )

        # floor(100 / 15) refunds fit.
        assert sum(1 for r in results if r.is_success) == 6
        assert await slow_orchestrator.refunded_total(paid.payment_id) == Decimal("90.00")

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_default_methods(
        self, slow_orchestrator: PaymentOrchestrator
    ) -> None:
        await asyncio.gather(
            *[
                slow_orchestrator.save_payment_method(
                    SaveMethodRequest(
                        customer_id="cust_1",
                        is_default=True,
                        method_details=MethodDetails(token=f"pm_{i}"),
                    ),
                    CallContext.new(),
                )
                for i in range(5)
            ]
        )

        methods = await slow_orchestrator.list_payment_methods("cust_1")
        assert len(methods) == 5
        assert sum(1 for m in methods if m.is_default) == 1
