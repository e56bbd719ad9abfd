"""
Stripe payment provider.

Implements:
- PaymentIntent creation and confirmation against a tokenised payment method
- Partial and full refunds
- Payment-method lookup (save) and detach (delete)
- Error classification and circuit breaker protection

The Stripe SDK is blocking, so every call runs in the default executor.
"""
import asyncio
import functools
import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, TypeVar

import stripe
import structlog

from payment_service.config import Settings, get_settings
from payment_service.domain.models import (
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
from payment_service.monitoring.metrics import metrics

from .base import (
    CircuitOpenError,
    PaymentProvider,
    ProviderError,
    ProviderErrorType,
    to_minor_units,
)
from .circuit_breaker import CircuitBreaker

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class StripeProvider(PaymentProvider):
    """
    Stripe implementation of the provider capability.

    Features:
    - Circuit breaker pattern
    - Idempotent payment creation
    - Comprehensive error classification
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """Initialize Stripe provider."""
        self.settings = settings or get_settings()
        if self.settings.stripe_secret_key:
            stripe.api_key = self.settings.stripe_secret_key
        stripe.api_version = self.settings.stripe_api_version
        self.circuit_breaker = CircuitBreaker("stripe")
        self._methods = self.settings.get_stripe_methods()

        logger.info(
            "stripe_provider_initialized",
            enabled=self.enabled,
            api_version=self.settings.stripe_api_version,
            test_mode=self.settings.is_test_mode,
        )

    @property
    def name(self) -> str:
        return "stripe"

    @property
    def enabled(self) -> bool:
        return self.settings.stripe_enabled

    @property
    def supported_methods(self) -> List[str]:
        return self._methods

    @staticmethod
    def _classify_error(error: stripe.StripeError) -> ProviderErrorType:
        """
        Classify Stripe error.

        Args:
            error: Stripe error

        Returns:
            ProviderErrorType: Error classification
        """
        if isinstance(error, stripe.RateLimitError):
            return ProviderErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return ProviderErrorType.TRANSIENT
        elif isinstance(error, (stripe.CardError, stripe.InvalidRequestError)):
            return ProviderErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return ProviderErrorType.TRANSIENT

    @staticmethod
    def _outcome_unknown(error: ProviderError) -> bool:
        """A transient failure after the request left may have been applied."""
        return error.error_type == ProviderErrorType.TRANSIENT and not isinstance(
            error, CircuitOpenError
        )

    def _to_provider_error(self, error: stripe.StripeError) -> ProviderError:
        error_type = self._classify_error(error)
        metrics.record_provider_error(self.name, error_type.value)
        logger.error(
            "stripe_api_error",
            error_type=error_type.value,
            error_code=getattr(error, "code", None),
            error_message=str(error),
        )
        message = getattr(error, "user_message", None) or str(error)
        return ProviderError(message, error_type, original_error=error)

    async def _call(self, operation: str, func: Callable[..., T], **kwargs: Any) -> T:
        """Run a blocking Stripe SDK call in the executor behind the breaker."""

        async def _run() -> T:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, functools.partial(func, **kwargs))

        start = time.time()
        try:
            result = await self.circuit_breaker.call(_run)
        except stripe.StripeError as e:
            metrics.record_provider_call(self.name, operation, "error", time.time() - start)
            raise self._to_provider_error(e) from e
        metrics.record_provider_call(self.name, operation, "success", time.time() - start)
        return result

    async def process_payment(
        self, request: PaymentRequest, correlation_id: str
    ) -> ProviderPaymentResult:
        logger.info(
            "stripe_payment_started",
            order_id=request.order_id,
            correlation_id=correlation_id,
        )

        params: Dict[str, Any] = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.lower(),
            "description": request.description or f"Payment for order {request.order_id}",
            "metadata": {
                "order_id": request.order_id,
                "customer_id": request.customer_id,
                "correlation_id": correlation_id,
            },
            "idempotency_key": f"payment-{request.order_id}-{correlation_id}",
        }
        token = request.method_details.token if request.method_details else None
        if token:
            params["payment_method"] = token
            params["confirm"] = True
            params["automatic_payment_methods"] = {"enabled": True, "allow_redirects": "never"}

        try:
            intent = await self._call("create_payment_intent", stripe.PaymentIntent.create, **params)
        except ProviderError as e:
            if self._outcome_unknown(e):
                # The charge may or may not exist remotely.
                return ProviderPaymentResult(
                    is_success=False,
                    status=PaymentStatus.PENDING,
                    failure_reason="Payment provider unreachable; outcome pending reconciliation",
                )
            return ProviderPaymentResult(
                is_success=False, status=PaymentStatus.FAILED, failure_reason=str(e)
            )

        metadata = {
            "stripe_payment_intent_id": intent.id,
            "stripe_client_secret": getattr(intent, "client_secret", None) or "",
        }

        if intent.status == "succeeded":
            is_success, status, reason = True, PaymentStatus.SUCCEEDED, None
        elif intent.status == "processing":
            is_success, status, reason = True, PaymentStatus.PROCESSING, None
        elif intent.status in ("requires_action", "requires_confirmation"):
            is_success, status = False, PaymentStatus.PENDING
            reason = "Payment requires additional action"
        else:
            is_success, status = False, PaymentStatus.FAILED
            reason = f"Payment failed with status: {intent.status}"

        logger.info(
            "stripe_payment_completed",
            order_id=request.order_id,
            payment_intent_id=intent.id,
            stripe_status=intent.status,
            correlation_id=correlation_id,
        )

        return ProviderPaymentResult(
            is_success=is_success,
            status=status,
            transaction_id=intent.id,
            provider_transaction_id=intent.id,
            failure_reason=reason,
            metadata=metadata,
        )

    async def process_refund(
        self,
        payment: PaymentRecord,
        amount: Decimal,
        reason: str,
        correlation_id: str,
    ) -> ProviderRefundResult:
        logger.info(
            "stripe_refund_started",
            payment_id=str(payment.id),
            amount=str(amount),
            correlation_id=correlation_id,
        )

        if not payment.provider_transaction_id:
            return ProviderRefundResult(
                is_success=False,
                status=RefundStatus.FAILED,
                failure_reason="Payment has no Stripe PaymentIntent ID",
            )

        try:
            refund = await self._call(
                "create_refund",
                stripe.Refund.create,
                payment_intent=payment.provider_transaction_id,
                amount=to_minor_units(amount),
                reason="requested_by_customer",
                metadata={
                    "payment_id": str(payment.id),
                    "order_id": payment.order_id,
                    "correlation_id": correlation_id,
                    "reason": reason or "",
                },
            )
        except ProviderError as e:
            if self._outcome_unknown(e):
                return ProviderRefundResult(
                    is_success=False,
                    status=RefundStatus.PENDING,
                    failure_reason="Refund provider unreachable; outcome pending reconciliation",
                )
            return ProviderRefundResult(
                is_success=False, status=RefundStatus.FAILED, failure_reason=str(e)
            )

        if refund.status == "succeeded":
            is_success, status, failure = True, RefundStatus.SUCCEEDED, None
        elif refund.status == "pending":
            is_success, status, failure = True, RefundStatus.PROCESSING, None
        else:
            is_success, status = False, RefundStatus.FAILED
            failure = f"Refund failed with status: {refund.status}"

        return ProviderRefundResult(
            is_success=is_success,
            status=status,
            refund_id=refund.id,
            provider_refund_id=refund.id,
            failure_reason=failure,
            metadata={"stripe_refund_id": refund.id},
        )

    async def save_method(
        self, request: SaveMethodRequest, correlation_id: str
    ) -> ProviderMethodResult:
        token = request.method_details.token if request.method_details else None
        if not token:
            return ProviderMethodResult.unsupported(
                "A Stripe payment method token is required to save a payment method"
            )

        try:
            method = await self._call(
                "retrieve_payment_method", stripe.PaymentMethod.retrieve, id=token
            )
        except ProviderError as e:
            return ProviderMethodResult(is_success=False, failure_reason=str(e))

        card = getattr(method, "card", None)
        logger.info(
            "stripe_payment_method_saved",
            customer_id=request.customer_id,
            correlation_id=correlation_id,
        )
        return ProviderMethodResult(
            is_success=True,
            provider_token_id=method.id,
            brand=getattr(card, "brand", None),
            last4=getattr(card, "last4", None),
            expiry_month=getattr(card, "exp_month", None),
            expiry_year=getattr(card, "exp_year", None),
            metadata={"stripe_payment_method_id": method.id},
        )

    async def delete_method(self, token: str, correlation_id: str) -> bool:
        try:
            await self._call("detach_payment_method", stripe.PaymentMethod.detach, payment_method=token)
        except ProviderError as e:
            logger.warning(
                "stripe_payment_method_detach_failed",
                error=str(e),
                correlation_id=correlation_id,
            )
            return False
        return True
