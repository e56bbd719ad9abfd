"""
Pytest configuration and fixtures.
"""
import asyncio
from decimal import Decimal
from typing import Any, List, Optional, Sequence

import pytest
import pytest_asyncio

from payment_service.config import Settings
from payment_service.core.orchestrator import PaymentOrchestrator
from payment_service.database.memory_ledger import InMemoryLedgerStore
from payment_service.domain.models import (
    CallContext,
    MethodDetails,
    PaymentRecord,
    PaymentRequest,
    PaymentStatus,
    RefundStatus,
    SaveMethodRequest,
)
from payment_service.domain.results import (
    ProviderMethodResult,
    ProviderPaymentResult,
    ProviderRefundResult,
)
from payment_service.providers.base import PaymentProvider
from payment_service.providers.registry import ProviderRegistry


class FakeProvider(PaymentProvider):
    """Scriptable in-process provider."""

    def __init__(
        self,
        name: str = "fake",
        methods: Sequence[str] = ("card",),
        enabled: bool = True,
        delay: float = 0.0,
    ) -> None:
        self._name = name
        self._methods = list(methods)
        self._enabled = enabled
        self.delay = delay

        self.payment_outcome: Optional[ProviderPaymentResult] = None
        self.payment_error: Optional[Exception] = None
        self.refund_outcome: Optional[ProviderRefundResult] = None
        self.refund_error: Optional[Exception] = None
        self.method_outcome: Optional[ProviderMethodResult] = None
        self.delete_result = True
        self.delete_error: Optional[Exception] = None

        self.payment_calls: List[PaymentRequest] = []
        self.refund_calls: List[Decimal] = []
        self.deleted_tokens: List[str] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def supported_methods(self) -> List[str]:
        return self._methods

    async def process_payment(
        self, request: PaymentRequest, correlation_id: str
    ) -> ProviderPaymentResult:
        self.payment_calls.append(request)
        await asyncio.sleep(self.delay)
        if self.payment_error is not None:
            raise self.payment_error
        if self.payment_outcome is not None:
            return self.payment_outcome
        charge_id = f"ch_{len(self.payment_calls)}"
        return ProviderPaymentResult(
            is_success=True,
            status=PaymentStatus.SUCCEEDED,
            transaction_id=charge_id,
            provider_transaction_id=charge_id,
            metadata={"fake_charge_id": charge_id},
        )

    async def process_refund(
        self,
        payment: PaymentRecord,
        amount: Decimal,
        reason: str,
        correlation_id: str,
    ) -> ProviderRefundResult:
        self.refund_calls.append(amount)
        await asyncio.sleep(self.delay)
        if self.refund_error is not None:
            raise self.refund_error
        if self.refund_outcome is not None:
            return self.refund_outcome
        refund_id = f"re_{len(self.refund_calls)}"
        return ProviderRefundResult(
            is_success=True,
            status=RefundStatus.SUCCEEDED,
            refund_id=refund_id,
            provider_refund_id=refund_id,
        )

    async def save_method(
        self, request: SaveMethodRequest, correlation_id: str
    ) -> ProviderMethodResult:
        if self.method_outcome is not None:
            return self.method_outcome
        token = request.method_details.token if request.method_details else None
        return ProviderMethodResult(
            is_success=True,
            provider_token_id=token or "tok_default",
            brand="visa",
            last4="4242",
            expiry_month=12,
            expiry_year=2030,
        )

    async def delete_method(self, token: str, correlation_id: str) -> bool:
        self.deleted_tokens.append(token)
        if self.delete_error is not None:
            raise self.delete_error
        return self.delete_result


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        stripe_secret_key="sk_test_fake_key_for_testing",
        paypal_client_id="paypal-client",
        paypal_client_secret="paypal-secret",
        default_provider="fake",
        app_name="payment-service-test",
        app_env="test",
        log_level="DEBUG",
        max_payment_amount=Decimal("10000.00"),
        max_page_size=100,
    )


@pytest.fixture
def ledger() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry(fake_provider: FakeProvider) -> ProviderRegistry:
    return ProviderRegistry([fake_provider], default_provider="fake")


@pytest.fixture
def orchestrator(
    ledger: InMemoryLedgerStore, registry: ProviderRegistry, test_settings: Settings
) -> PaymentOrchestrator:
    return PaymentOrchestrator(ledger, registry, test_settings)


@pytest.fixture
def ctx() -> CallContext:
    return CallContext(correlation_id="corr-test-1", user_id="tester")


def make_payment_request(**overrides: Any) -> PaymentRequest:
    """Payment request for ORD-1 / 100.00 USD, with overrides."""
    fields: dict[str, Any] = {
        "order_id": "ORD-1",
        "customer_id": "cust_1",
        "amount": Decimal("100.00"),
        "currency": "USD",
        "payment_method": "card",
        "method_details": MethodDetails(token="pm_card_visa"),
    }
    fields.update(overrides)
    return PaymentRequest(**fields)


@pytest_asyncio.fixture
async def succeeded_payment(
    orchestrator: PaymentOrchestrator, ctx: CallContext
) -> PaymentRecord:
    """A succeeded 100.00 USD payment for ORD-1."""
    result = await orchestrator.process_payment(make_payment_request(), ctx)
    assert result.is_success
    payment = await orchestrator.get_payment(result.payment_id)
    assert payment is not None
    return payment
