"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from payment_service.domain.models import (
    MethodDetails,
    PaymentRequest,
    PaymentStatus,
    RefundRequest,
    RefundStatus,
    SaveMethodRequest,
)
from payment_service.domain.results import ErrorCode


class PaymentMethodDetails(BaseModel):
    """Opaque provider token plus optional contact data. Raw card data is not accepted."""

    token: Optional[str] = Field(default=None, description="Provider-issued token (e.g. pm_...)")
    email: Optional[str] = Field(default=None, description="Payer email")
    billing_address: Optional[str] = Field(default=None, description="Billing address")

    def to_domain(self) -> MethodDetails:
        return MethodDetails(
            token=self.token, email=self.email, billing_address=self.billing_address
        )


class ProcessPaymentRequest(BaseModel):
    """Request schema for processing a payment."""

    order_id: str = Field(..., max_length=100, description="Order identifier")
    customer_id: str = Field(..., max_length=100, description="Customer identifier")
    amount: Decimal = Field(..., description="Payment amount in currency units")
    currency: str = Field(default="USD", description="ISO 4217 currency code")
    payment_method: Optional[str] = Field(
        default=None, description="Payment-method label (card, paypal, ...)"
    )
    provider: Optional[str] = Field(default=None, description="Explicit provider name")
    description: Optional[str] = Field(default=None, max_length=500, description="Description")
    payment_method_details: Optional[PaymentMethodDetails] = Field(
        default=None, description="Provider token for the charge"
    )
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return v.strip().upper()

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "ORD-1",
                    "customer_id": "cust_123",
                    "amount": "100.00",
                    "currency": "USD",
                    "payment_method": "card",
                    "payment_method_details": {"token": "pm_card_visa"},
                }
            ]
        }
    }

    def to_domain(self) -> PaymentRequest:
        return PaymentRequest(
            order_id=self.order_id,
            customer_id=self.customer_id,
            amount=self.amount,
            currency=self.currency,
            payment_method=self.payment_method,
            provider=self.provider,
            description=self.description,
            method_details=(
                self.payment_method_details.to_domain() if self.payment_method_details else None
            ),
            metadata=dict(self.metadata),
        )


class PaymentResponse(BaseModel):
    """Response schema for payment processing."""

    model_config = ConfigDict(from_attributes=True)

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
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProcessRefundRequest(BaseModel):
    """Request schema for refunding a payment."""

    amount: Decimal = Field(..., description="Refund amount in currency units")
    reason: Optional[str] = Field(default=None, max_length=500, description="Refund reason")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")

    def to_domain(self, payment_id: str) -> RefundRequest:
        return RefundRequest(
            payment_id=payment_id,
            amount=self.amount,
            reason=self.reason,
            metadata=dict(self.metadata),
        )


class RefundResponse(BaseModel):
    """Response schema for refund processing."""

    model_config = ConfigDict(from_attributes=True)

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


class RefundDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: Decimal
    currency: str
    status: RefundStatus
    reason: Optional[str] = None
    provider_refund_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None


class PaymentDetailResponse(BaseModel):
    """Stored payment with its refunds."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: str
    customer_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    provider: str
    payment_method: str
    description: Optional[str] = None
    transaction_id: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    processed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_amount: Decimal
    refunds: List[RefundDetail] = Field(default_factory=list)


class SavePaymentMethodRequest(BaseModel):
    """Request schema for saving a payment method."""

    customer_id: str = Field(..., max_length=100, description="Customer identifier")
    method_type: str = Field(default="card", description="Method type (card, paypal, ...)")
    provider: Optional[str] = Field(default=None, description="Provider (default if omitted)")
    is_default: bool = Field(default=False, description="Make this the customer's default")
    display_name: Optional[str] = Field(default=None, max_length=100)
    payment_method_details: Optional[PaymentMethodDetails] = None

    def to_domain(self) -> SaveMethodRequest:
        return SaveMethodRequest(
            customer_id=self.customer_id,
            method_type=self.method_type,
            provider=self.provider,
            is_default=self.is_default,
            display_name=self.display_name,
            method_details=(
                self.payment_method_details.to_domain() if self.payment_method_details else None
            ),
        )


class SavePaymentMethodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class PaymentMethodResponse(BaseModel):
    """Saved payment method (display data only)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: str
    provider: str
    method_type: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    expiry_month: Optional[int] = None
    expiry_year: Optional[int] = None
    display_name: Optional[str] = None
    is_default: bool
    created_at: datetime


class ProvidersResponse(BaseModel):
    default_provider: Optional[str] = None
    providers: Dict[str, List[str]] = Field(
        default_factory=dict, description="Enabled provider -> supported payment methods"
    )


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
    message: Optional[str] = Field(default=None, description="Status message")
