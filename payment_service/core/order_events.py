"""
Order event handling.

Consumes events published by the order service:
- ``order.created``: charge the customer for the order
- ``order.cancelled``: refund the order's succeeded payment when requested

Handlers always return an outcome mapping; a failing event is logged and
reported, never raised back into the message bus.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from payment_service.domain.models import (
    CallContext,
    MethodDetails,
    PaymentRequest,
    PaymentStatus,
    RefundRequest,
)
from payment_service.monitoring.metrics import metrics

from .orchestrator import PaymentOrchestrator

logger = structlog.get_logger(__name__)

ORDER_EVENTS_USER = "order-events"


class _OrderEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderCreatedEvent(_OrderEvent):
    """Payload of ``order.created``."""

    order_id: str
    customer_id: str
    total_amount: Decimal
    currency: str = "USD"
    payment_method: Optional[str] = None
    payment_method_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None
    created_at: Optional[datetime] = None


class OrderCancelledEvent(_OrderEvent):
    """Payload of ``order.cancelled``."""

    order_id: str
    customer_id: Optional[str] = None
    payment_id: Optional[str] = None
    reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    requires_refund: bool = False
    refund_amount: Optional[Decimal] = None
    correlation_id: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class OrderEventHandler:
    """Turns order lifecycle events into orchestrator calls."""

    def __init__(self, orchestrator: PaymentOrchestrator):
        self.orchestrator = orchestrator

    async def handle(self, event_type: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Dispatch an event by type."""
        try:
            if event_type == "order.created":
                return await self.handle_order_created(OrderCreatedEvent.model_validate(payload))
            if event_type == "order.cancelled":
                return await self.handle_order_cancelled(
                    OrderCancelledEvent.model_validate(payload)
                )
        except ValidationError as e:
            logger.warning("order_event_invalid", event_type=event_type, errors=e.errors())
            metrics.record_order_event(event_type, "failed")
            return {"success": False, "error": "Invalid event payload"}

        logger.info("order_event_ignored", event_type=event_type)
        metrics.record_order_event(event_type, "ignored")
        return {"success": False, "processed": False, "message": f"Unhandled event type {event_type}"}

    async def handle_order_created(self, event: OrderCreatedEvent) -> Dict[str, Any]:
        ctx = CallContext(
            correlation_id=event.correlation_id or CallContext.new().correlation_id,
            user_id=ORDER_EVENTS_USER,
        )
        log = logger.bind(correlation_id=ctx.correlation_id, order_id=event.order_id)
        log.info(
            "order_created_event_received",
            customer_id=event.customer_id,
            amount=str(event.total_amount),
            currency=event.currency,
            payment_method=event.payment_method,
        )

        existing = await self.orchestrator.list_payments(order_id=event.order_id, ctx=ctx)
        if any(
            p.status in (PaymentStatus.SUCCEEDED, PaymentStatus.PROCESSING) for p in existing
        ):
            log.warning("order_created_event_duplicate", existing_payment_count=len(existing))
            metrics.record_order_event("order.created", "ignored")
            return {"success": True, "skipped": True, "message": "Payment already exists"}

        metadata = dict(event.metadata)
        if event.payment_method_id:
            metadata["payment_method_id"] = event.payment_method_id

        result = await self.orchestrator.process_payment(
            PaymentRequest(
                order_id=event.order_id,
                customer_id=event.customer_id,
                amount=event.total_amount,
                currency=event.currency,
                payment_method=event.payment_method or None,
                description=f"Payment for order {event.order_id}",
                method_details=(
                    MethodDetails(token=event.payment_method_id)
                    if event.payment_method_id
                    else None
                ),
                metadata=metadata,
            ),
            ctx,
        )

        metrics.record_order_event("order.created", "success" if result.is_success else "failed")
        log.info(
            "order_created_event_processed",
            payment_id=result.payment_id,
            status=result.status.value if result.status else None,
            success=result.is_success,
        )
        return {
            "success": result.is_success,
            "payment_id": result.payment_id,
            "status": result.status.value if result.status else None,
            "error": result.error_message,
        }

    async def handle_order_cancelled(self, event: OrderCancelledEvent) -> Dict[str, Any]:
        ctx = CallContext(
            correlation_id=event.correlation_id or CallContext.new().correlation_id,
            user_id=event.cancelled_by or ORDER_EVENTS_USER,
        )
        log = logger.bind(correlation_id=ctx.correlation_id, order_id=event.order_id)
        log.info(
            "order_cancelled_event_received",
            reason=event.reason,
            requires_refund=event.requires_refund,
        )

        if not event.requires_refund:
            metrics.record_order_event("order.cancelled", "ignored")
            return {"success": True, "processed": False, "message": "No refund required"}

        payments = await self.orchestrator.list_payments(order_id=event.order_id, ctx=ctx)
        succeeded = next((p for p in payments if p.status == PaymentStatus.SUCCEEDED), None)
        if succeeded is None:
            log.warning("order_cancelled_no_payment", payment_count=len(payments))
            metrics.record_order_event("order.cancelled", "ignored")
            return {"success": False, "processed": False, "message": "No successful payment found"}

        amount = event.refund_amount if event.refund_amount is not None else succeeded.amount
        result = await self.orchestrator.process_refund(
            RefundRequest(
                payment_id=str(succeeded.id),
                amount=amount,
                reason=event.reason or "Order cancelled",
            ),
            ctx,
        )

        metrics.record_order_event("order.cancelled", "success" if result.is_success else "failed")
        log.info(
            "order_cancelled_refund_processed",
            payment_id=str(succeeded.id),
            refund_id=result.refund_id,
            amount=str(amount),
            success=result.is_success,
        )
        return {
            "success": result.is_success,
            "processed": True,
            "refund_id": result.refund_id,
            "amount": str(amount),
            "status": result.status.value if result.status else None,
            "error": result.error_message,
        }
