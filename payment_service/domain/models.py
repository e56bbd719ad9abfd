"""
Ledger records and request types shared by the orchestrator, the providers and
the ledger stores.

Records are frozen dataclasses: every state change produces a new record via
``dataclasses.replace`` so nothing read before an ``await`` is mutated behind
another coroutine's back.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

CENTS = Decimal("0.01")
SYSTEM_USER = "system"


class PaymentStatus(str, Enum):
    """Lifecycle of a payment row."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RefundStatus(str, Enum):
    """Lifecycle of a refund row."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Payments in these states hold the order: a new attempt is a duplicate.
LIVE_PAYMENT_STATUSES = (
    PaymentStatus.PENDING,
    PaymentStatus.PROCESSING,
    PaymentStatus.SUCCEEDED,
)

# Refunds in these states count against the refundable balance.
RESERVED_REFUND_STATUSES = (
    RefundStatus.PENDING,
    RefundStatus.PROCESSING,
    RefundStatus.SUCCEEDED,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(amount: Any) -> Decimal:
    """Quantize an amount to currency scale (two decimal places)."""
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def merge_metadata(
    base: Optional[Mapping[str, Any]], incoming: Optional[Mapping[str, Any]]
) -> Dict[str, Any]:
    """
    Union of two metadata mappings, returned as a new dict.

    Keys from ``incoming`` win on conflict. Neither argument is modified.
    """
    merged: Dict[str, Any] = dict(base or {})
    if incoming:
        merged.update(incoming)
    return merged


@dataclass(frozen=True)
class CallContext:
    """Caller identity and correlation id threaded through every call."""

    correlation_id: str
    user_id: str = SYSTEM_USER

    @classmethod
    def new(cls, user_id: Optional[str] = None) -> "CallContext":
        return cls(correlation_id=str(uuid.uuid4()), user_id=user_id or SYSTEM_USER)


@dataclass(frozen=True)
class MethodDetails:
    """
    Opaque payment-method reference supplied by the caller.

    ``token`` is a provider-issued token (for example a Stripe ``pm_...`` id);
    raw card numbers are never accepted.
    """

    token: Optional[str] = None
    email: Optional[str] = None
    billing_address: Optional[str] = None


@dataclass(frozen=True)
class PaymentRequest:
    order_id: str
    customer_id: str
    amount: Decimal
    currency: str = "USD"
    payment_method: Optional[str] = None
    provider: Optional[str] = None
    description: Optional[str] = None
    method_details: Optional[MethodDetails] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RefundRequest:
    payment_id: str
    amount: Decimal
    reason: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SaveMethodRequest:
    customer_id: str
    method_type: str = "card"
    provider: Optional[str] = None
    is_default: bool = False
    display_name: Optional[str] = None
    method_details: Optional[MethodDetails] = None


@dataclass(frozen=True)
class RefundRecord:
    id: uuid.UUID
    payment_id: uuid.UUID
    amount: Decimal
    currency: str
    status: RefundStatus
    correlation_id: str
    reason: Optional[str] = None
    provider_refund_id: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    created_by: str = SYSTEM_USER
    updated_by: str = SYSTEM_USER


@dataclass(frozen=True)
class PaymentRecord:
    id: uuid.UUID
    order_id: str
    customer_id: str
    amount: Decimal
    currency: str
    provider: str
    payment_method: str
    status: PaymentStatus
    correlation_id: str
    description: Optional[str] = None
    transaction_id: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    created_by: str = SYSTEM_USER
    updated_by: str = SYSTEM_USER
    refunds: Tuple[RefundRecord, ...] = ()

    @property
    def refunded_amount(self) -> Decimal:
        """Sum of succeeded refunds loaded with this record."""
        return sum(
            (r.amount for r in self.refunds if r.status == RefundStatus.SUCCEEDED),
            Decimal("0.00"),
        )


@dataclass(frozen=True)
class PaymentMethodRecord:
    id: uuid.UUID
    customer_id: str
    provider: str
    provider_token_id: str
    method_type: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    expiry_month: Optional[int] = None
    expiry_year: Optional[int] = None
    display_name: Optional[str] = None
    is_default: bool = False
    metadata: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    created_by: str = SYSTEM_USER
    updated_by: str = SYSTEM_USER


@dataclass(frozen=True)
class OutboxMessage:
    """Domain event to be written in the same transaction as a ledger change."""

    aggregate_id: uuid.UUID
    aggregate_type: str
    event_type: str
    payload: Mapping[str, Any] = field(default_factory=dict)
