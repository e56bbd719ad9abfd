"""
Unit tests for order lifecycle event handling.
"""
from decimal import Decimal

import pytest

from conftest import FakeProvider
from payment_service.core.order_events import OrderEventHandler
from payment_service.core.orchestrator import PaymentOrchestrator
from payment_service.domain.models import PaymentStatus
from payment_service.domain.results import ProviderPaymentResult

ORDER_CREATED = {
    "orderId": "ORD-7",
    "customerId": "cust_7",
    "totalAmount": "59.90",
    "currency": "EUR",
    "paymentMethod": "card",
    "paymentMethodId": "pm_card_visa",
    "correlationId": "corr-order-7",
}


@pytest.fixture
def handler(orchestrator: PaymentOrchestrator) -> OrderEventHandler:
    return OrderEventHandler(orchestrator)


class TestOrderCreated:
    """``order.created`` events."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_charges_the_order(
        self,
        handler: OrderEventHandler,
        orchestrator: PaymentOrchestrator,
        fake_provider: FakeProvider,
    ) -> None:
        outcome = await handler.handle("order.created", ORDER_CREATED)

        assert outcome["success"] is True
        assert outcome["status"] == "succeeded"

        payment = await orchestrator.get_payment(outcome["payment_id"])
        assert payment.amount == Decimal("59.90")
        assert payment.currency == "EUR"
        assert payment.correlation_id == "corr-order-7"
        assert payment.created_by == "order-events"
        assert payment.metadata["payment_method_id"] == "pm_card_visa"
        assert fake_provider.payment_calls[0].method_details.token == "pm_card_visa"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redelivered_event_is_skipped(
        self, handler: OrderEventHandler, fake_provider: FakeProvider
    ) -> None:
        await handler.handle("order.created", ORDER_CREATED)
        again = await handler.handle("order.created", ORDER_CREATED)

        assert again == {"success": True, "skipped": True, "message": "Payment already exists"}
        assert len(fake_provider.payment_calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_snake_case_payload_is_accepted(self, handler: OrderEventHandler) -> None:
        outcome = await handler.handle(
            "order.created",
            {"order_id": "ORD-8", "customer_id": "cust_8", "total_amount": "10.00"},
        )
        assert outcome["success"] is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_payload(self, handler: OrderEventHandler) -> None:
        outcome = await handler.handle("order.created", {"orderId": "ORD-9"})
        assert outcome == {"success": False, "error": "Invalid event payload"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_event_type(self, handler: OrderEventHandler) -> None:
        outcome = await handler.handle("order.shipped", {})
        assert outcome["processed"] is False


class TestOrderCancelled:
    """``order.cancelled`` events."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_full_refund_by_default(
        self, handler: OrderEventHandler, orchestrator: PaymentOrchestrator
    ) -> None:
        created = await handler.handle("order.created", ORDER_CREATED)

        outcome = await handler.handle(
            "order.cancelled",
            {"orderId": "ORD-7", "requiresRefund": True, "cancelledBy": "support-1"},
        )

        assert outcome["success"] is True
        assert outcome["amount"] == "59.90"
        assert await orchestrator.refunded_total(created["payment_id"]) == Decimal("59.90")
        payment = await orchestrator.get_payment(created["payment_id"])
        assert payment.refunds[0].reason == "Order cancelled"
        assert payment.refunds[0].created_by == "support-1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_partial_refund_amount(
        self, handler: OrderEventHandler, orchestrator: PaymentOrchestrator
    ) -> None:
        created = await handler.handle("order.created", ORDER_CREATED)

        outcome = await handler.handle(
            "order.cancelled",
            {
                "orderId": "ORD-7",
                "requiresRefund": True,
                "refundAmount": "9.90",
                "reason": "Item out of stock",
            },
        )

        assert outcome["success"] is True
        assert await orchestrator.refunded_total(created["payment_id"]) == Decimal("9.90")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_refund_required(self, handler: OrderEventHandler) -> None:
        outcome = await handler.handle("order.cancelled", {"orderId": "ORD-7"})
        assert outcome["processed"] is False
        assert outcome["message"] == "No refund required"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_succeeded_payment(
        self, handler: OrderEventHandler, fake_provider: FakeProvider
    ) -> None:
        fake_provider.payment_outcome = ProviderPaymentResult(
            is_success=False, status=PaymentStatus.FAILED, failure_reason="declined"
        )
        await handler.handle("order.created", ORDER_CREATED)

        outcome = await handler.handle(
            "order.cancelled", {"orderId": "ORD-7", "requiresRefund": True}
        )
        assert outcome["success"] is False
        assert outcome["message"] == "No successful payment found"
