"""
Payment provider capability interface.

Every external payment network (Stripe, PayPal, ...) implements this interface.
The orchestrator only ever talks to providers through it, so a provider that
cannot perform an operation reports that as a failed result instead of raising.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Sequence

from payment_service.domain.models import PaymentRecord, PaymentRequest, SaveMethodRequest
from payment_service.domain.results import (
    ProviderMethodResult,
    ProviderPaymentResult,
    ProviderRefundResult,
)


class ProviderErrorType(Enum):
    """Classification of provider errors."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RATE_LIMIT = "rate_limit"


class ProviderError(Exception):
    """Raised inside provider adapters when the remote call fails."""

    def __init__(
        self,
        message: str,
        error_type: ProviderErrorType,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error


class CircuitOpenError(ProviderError):
    """Raised without contacting the provider while its circuit is open."""

    def __init__(self, provider: str):
        super().__init__(
            f"Circuit breaker for {provider} is open", ProviderErrorType.TRANSIENT
        )


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency-scale amount to integer minor units (cents)."""
    return int((amount * 100).to_integral_value())


class PaymentProvider(ABC):
    """Abstract base class for payment providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable provider identifier (e.g. 'stripe')."""
        ...

    @property
    @abstractmethod
    def enabled(self) -> bool:
        ...

    @property
    @abstractmethod
    def supported_methods(self) -> Sequence[str]:
        """Payment-method labels this provider can charge."""
        ...

    def supports(self, payment_method: str) -> bool:
        label = payment_method.strip().lower()
        return any(label == m.lower() for m in self.supported_methods)

    def describe(self) -> List[str]:
        return list(self.supported_methods)

    @abstractmethod
    async def process_payment(
        self, request: PaymentRequest, correlation_id: str
    ) -> ProviderPaymentResult:
        """
        Charge the customer.

        May return a ``pending`` or ``processing`` outcome when the provider has
        not settled the payment yet.
        """
        ...

    @abstractmethod
    async def process_refund(
        self,
        payment: PaymentRecord,
        amount: Decimal,
        reason: str,
        correlation_id: str,
    ) -> ProviderRefundResult:
        ...

    @abstractmethod
    async def save_method(
        self, request: SaveMethodRequest, correlation_id: str
    ) -> ProviderMethodResult:
        ...

    @abstractmethod
    async def delete_method(self, token: str, correlation_id: str) -> bool:
        """Revoke a stored token. Returns False when the provider refused."""
        ...

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
        return None
