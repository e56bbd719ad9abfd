"""
In-memory Ledger Store.

Used by tests and local development. Each method runs to completion without
awaiting, so on a single event loop every check-then-write sequence below is
atomic with respect to other coroutines.
"""
import uuid
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Optional

from payment_service.domain.models import (
    LIVE_PAYMENT_STATUSES,
    RESERVED_REFUND_STATUSES,
    OutboxMessage,
    PaymentMethodRecord,
    PaymentRecord,
    PaymentStatus,
    RefundRecord,
    RefundStatus,
    utcnow,
)

from .ledger import (
    DuplicateOrderError,
    DuplicatePaymentMethodError,
    PaymentNotRefundableError,
    RefundBalanceExceeded,
)


class InMemoryLedgerStore:
    """Dictionary-backed Ledger Store with the same invariants as the SQL store."""

    def __init__(self) -> None:
        self.payments: Dict[uuid.UUID, PaymentRecord] = {}
        self.refunds: Dict[uuid.UUID, RefundRecord] = {}
        self.methods: Dict[uuid.UUID, PaymentMethodRecord] = {}
        self.outbox: List[OutboxMessage] = []

    def _with_refunds(self, payment: PaymentRecord) -> PaymentRecord:
        refunds = sorted(
            (r for r in self.refunds.values() if r.payment_id == payment.id),
            key=lambda r: r.created_at,
        )
        return replace(payment, refunds=tuple(refunds))

    async def create_payment(self, payment: PaymentRecord) -> PaymentRecord:
        for existing in self.payments.values():
            if (
                existing.order_id == payment.order_id
                and existing.status in LIVE_PAYMENT_STATUSES
            ):
                raise DuplicateOrderError(payment.order_id)
        self.payments[payment.id] = replace(payment, refunds=())
        return payment

    async def update_payment(
        self, payment: PaymentRecord, event: Optional[OutboxMessage] = None
    ) -> PaymentRecord:
        if payment.id not in self.payments:
            raise LookupError(f"Payment {payment.id} not found")
        self.payments[payment.id] = replace(payment, refunds=())
        if event is not None:
            self.outbox.append(event)
        return payment

    async def get_payment(self, payment_id: uuid.UUID) -> Optional[PaymentRecord]:
        payment = self.payments.get(payment_id)
        return self._with_refunds(payment) if payment is not None else None

    async def find_succeeded_payment(self, order_id: str) -> Optional[PaymentRecord]:
        for payment in self.payments.values():
            if payment.order_id == order_id and payment.status == PaymentStatus.SUCCEEDED:
                return self._with_refunds(payment)
        return None

    async def get_payment_by_order(self, order_id: str) -> Optional[PaymentRecord]:
        matches = [p for p in self.payments.values() if p.order_id == order_id]
        if not matches:
            return None
        return self._with_refunds(max(matches, key=lambda p: p.created_at))

    async def list_payments(
        self,
        customer_id: Optional[str] = None,
        order_id: Optional[str] = None,
        skip: int = 0,
        take: int = 50,
    ) -> List[PaymentRecord]:
        payments = [
            p
            for p in self.payments.values()
            if (not customer_id or p.customer_id == customer_id)
            and (not order_id or p.order_id == order_id)
        ]
        payments.sort(key=lambda p: p.created_at, reverse=True)
        return [self._with_refunds(p) for p in payments[skip : skip + take]]

    async def create_refund_within_balance(self, refund: RefundRecord) -> RefundRecord:
        payment = self.payments.get(refund.payment_id)
        if payment is None or payment.status != PaymentStatus.SUCCEEDED:
            raise PaymentNotRefundableError(str(refund.payment_id))

        reserved = sum(
            (
                r.amount
                for r in self.refunds.values()
                if r.payment_id == refund.payment_id and r.status in RESERVED_REFUND_STATUSES
            ),
            Decimal("0.00"),
        )
        if reserved + refund.amount > payment.amount:
            raise RefundBalanceExceeded(reserved)

        self.refunds[refund.id] = refund
        return refund

    async def update_refund(
        self, refund: RefundRecord, event: Optional[OutboxMessage] = None
    ) -> RefundRecord:
        if refund.id not in self.refunds:
            raise LookupError(f"Refund {refund.id} not found")
        self.refunds[refund.id] = refund
        if event is not None:
            self.outbox.append(event)
        return refund

    async def refunded_total(self, payment_id: uuid.UUID) -> Decimal:
        return sum(
            (
                r.amount
                for r in self.refunds.values()
                if r.payment_id == payment_id and r.status == RefundStatus.SUCCEEDED
            ),
            Decimal("0.00"),
        )

    async def create_payment_method(
        self, method: PaymentMethodRecord, event: Optional[OutboxMessage] = None
    ) -> PaymentMethodRecord:
        for existing in self.methods.values():
            if (
                existing.provider == method.provider
                and existing.provider_token_id == method.provider_token_id
            ):
                raise DuplicatePaymentMethodError(method.provider_token_id)

        if method.is_default:
            now = utcnow()
            for method_id, existing in list(self.methods.items()):
                if existing.customer_id == method.customer_id and existing.is_default:
                    self.methods[method_id] = replace(
                        existing,
                        is_default=False,
                        updated_at=now,
                        updated_by=method.updated_by,
                    )

        self.methods[method.id] = method
        if event is not None:
            self.outbox.append(event)
        return method

    async def get_payment_method(self, method_id: uuid.UUID) -> Optional[PaymentMethodRecord]:
        return self.methods.get(method_id)

    async def delete_payment_method(
        self, method_id: uuid.UUID, event: Optional[OutboxMessage] = None
    ) -> bool:
        if self.methods.pop(method_id, None) is None:
            return False
        if event is not None:
            self.outbox.append(event)
        return True

    async def list_payment_methods(self, customer_id: str) -> List[PaymentMethodRecord]:
        methods = [m for m in self.methods.values() if m.customer_id == customer_id]
        methods.sort(key=lambda m: m.created_at, reverse=True)
        methods.sort(key=lambda m: m.is_default, reverse=True)
        return methods
