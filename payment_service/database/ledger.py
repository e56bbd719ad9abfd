"""
Ledger Store interface.

The orchestrator never takes locks of its own. Every write that has to respect
a ledger invariant (one live payment per order, refunds within the payment
amount, one default method per customer) is a single Ledger Store call that
the backend makes atomic against durable state.
"""
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import List, Optional, Protocol

from payment_service.domain.models import (
    OutboxMessage,
    PaymentMethodRecord,
    PaymentRecord,
    RefundRecord,
)


class LedgerError(Exception):
    """Base class for ledger invariant violations."""

    pass


class DuplicateOrderError(LedgerError):
    """A live (pending, processing or succeeded) payment already holds the order."""

    def __init__(self, order_id: str):
        super().__init__(f"Live payment already exists for order {order_id}")
        self.order_id = order_id


class RefundBalanceExceeded(LedgerError):
    """Reserved refunds plus the requested amount would exceed the payment amount."""

    def __init__(self, refunded_total: Decimal):
        super().__init__(f"Refund exceeds balance (already reserved {refunded_total})")
        self.refunded_total = refunded_total


class PaymentNotRefundableError(LedgerError):
    """The payment row is missing or not succeeded at the time of the refund insert."""

    pass


class DuplicatePaymentMethodError(LedgerError):
    """The (provider, provider token) pair is already saved."""

    pass


class DefaultMethodConflict(LedgerError):
    """A concurrent writer set another default for the same customer."""

    pass


class LedgerStore(Protocol):
    """Durable storage of payments, refunds and payment methods."""

    async def create_payment(self, payment: PaymentRecord) -> PaymentRecord:
        """
        Insert a new payment.

        Raises:
            DuplicateOrderError: If a live payment exists for ``payment.order_id``
        """
        ...

    async def update_payment(
        self, payment: PaymentRecord, event: Optional[OutboxMessage] = None
    ) -> PaymentRecord:
        """Persist the new state of a payment, with its outbox event if given."""
        ...

    async def get_payment(self, payment_id: uuid.UUID) -> Optional[PaymentRecord]:
        ...

    async def find_succeeded_payment(self, order_id: str) -> Optional[PaymentRecord]:
        ...

    async def get_payment_by_order(self, order_id: str) -> Optional[PaymentRecord]:
        """Most recent payment attempt for the order."""
        ...

    async def list_payments(
        self,
        customer_id: Optional[str] = None,
        order_id: Optional[str] = None,
        skip: int = 0,
        take: int = 50,
    ) -> List[PaymentRecord]:
        """Payments newest first."""
        ...

    async def create_refund_within_balance(self, refund: RefundRecord) -> RefundRecord:
        """
        Insert a refund if the payment's reserved refund total leaves room for it.

        The check and the insert happen atomically.

        Raises:
            PaymentNotRefundableError: If the payment is missing or not succeeded
            RefundBalanceExceeded: If the refund does not fit the remaining balance
        """
        ...

    async def update_refund(
        self, refund: RefundRecord, event: Optional[OutboxMessage] = None
    ) -> RefundRecord:
        ...

    async def refunded_total(self, payment_id: uuid.UUID) -> Decimal:
        """Sum of succeeded refunds for the payment."""
        ...

    async def create_payment_method(
        self, method: PaymentMethodRecord, event: Optional[OutboxMessage] = None
    ) -> PaymentMethodRecord:
        """
        Insert a saved method, clearing the customer's other defaults first when
        ``method.is_default`` is set.

        Raises:
            DuplicatePaymentMethodError: If the provider token is already saved
        """
        ...

    async def get_payment_method(self, method_id: uuid.UUID) -> Optional[PaymentMethodRecord]:
        ...

    async def delete_payment_method(
        self, method_id: uuid.UUID, event: Optional[OutboxMessage] = None
    ) -> bool:
        ...

    async def list_payment_methods(self, customer_id: str) -> List[PaymentMethodRecord]:
        """Customer's methods, default first then newest first."""
        ...
