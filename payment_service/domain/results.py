"""Result values returned by providers and by the orchestrator."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from .models import PaymentStatus, RefundStatus


class ErrorCode(str, Enum):
    """Classification of unsuccessful results."""

    INVALID_REQUEST = "invalid_request"
    DUPLICATE_PAYMENT = "duplicate_payment"
    PAYMENT_NOT_FOUND = "payment_not_found"
    PAYMENT_NOT_REFUNDABLE = "payment_not_refundable"
    REFUND_EXCEEDS_BALANCE = "refund_exceeds_balance"
    UNSUPPORTED_PROVIDER = "unsupported_provider"
    PROVIDER_DISABLED = "provider_disabled"
    NO_PROVIDER_FOR_METHOD = "no_provider_for_method"
    NO_DEFAULT_CONFIGURED = "no_default_configured"
    DUPLICATE_PAYMENT_METHOD = "duplicate_payment_method"
    PROVIDER_DECLINED = "provider_declined"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass(frozen=True)
class ProviderPaymentResult:
    is_success: bool
    status: PaymentStatus
    transaction_id: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderRefundResult:
    is_success: bool
    status: RefundStatus
    refund_id: Optional[str] = None
    provider_refund_id: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderMethodResult:
    is_success: bool
    provider_token_id: Optional[str] = None
    brand: Optional[str] = None
    last4: Optional[str] = None
    expiry_month: Optional[int] = None
    expiry_year: Optional[int] = None
    failure_reason: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def unsupported(cls, reason: str) -> "ProviderMethodResult":
        return cls(is_success=False, failure_reason=reason)


@dataclass(frozen=True)
class PaymentResult:
    is_success: bool
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    customer_id: Optional[str] = None
    status: Optional[PaymentStatus] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    provider: Optional[str] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, code: ErrorCode, message: str, **kwargs: Any) -> "PaymentResult":
        return cls(is_success=False, error_code=code, error_message=message, **kwargs)


@dataclass(frozen=True)
class RefundResult:
    is_success: bool
    refund_id: Optional[str] = None
    payment_id: Optional[str] = None
    status: Optional[RefundStatus] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    provider_refund_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None

    @classmethod
    def failure(cls, code: ErrorCode, message: str, **kwargs: Any) -> "RefundResult":
        return cls(is_success=False, error_code=code, error_message=message, **kwargs)


@dataclass(frozen=True)
class SaveMethodResult:
    is_success: bool
    payment_method_id: Optional[str] = None
    provider: Optional[str] = None
    provider_token_id: Optional[str] = None
    brand: Optional[str] = None
    last4: Optional[str] = None
    expiry_month: Optional[int] = None
    expiry_year: Optional[int] = None
    is_default: bool = False
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None

    @classmethod
    def failure(cls, code: ErrorCode, message: Optional[str]) -> "SaveMethodResult":
        return cls(is_success=False, error_code=code, error_message=message)
