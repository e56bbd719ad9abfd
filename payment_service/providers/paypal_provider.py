"""
PayPal payment provider backed by the PayPal REST v2 API.

Orders are created with ``intent=CAPTURE``. A freshly created order still needs
buyer approval, so it is reported as a pending success carrying the approval
URL; an order that comes back already approved is captured immediately.
"""
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
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

from .base import PaymentProvider, ProviderError, ProviderErrorType
from .circuit_breaker import CircuitBreaker

logger = structlog.get_logger(__name__)

SERVICE_UNAVAILABLE = "PayPal service unavailable"
OUTCOME_UNKNOWN = "PayPal did not answer; outcome pending reconciliation"
REQUEST_REJECTED = "PayPal rejected the request"
SAVE_UNSUPPORTED = (
    "PayPal does not support saving payment methods. "
    "Use PayPal's billing agreements instead."
)


class PayPalProvider(PaymentProvider):
    """PayPal implementation of the provider capability."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.paypal_base_url,
            timeout=self.settings.paypal_timeout_seconds,
        )
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self._methods = self.settings.get_paypal_methods()
        self.circuit_breaker = CircuitBreaker("paypal")

        if not self.enabled:
            logger.warning("paypal_provider_disabled")

    @property
    def name(self) -> str:
        return "paypal"

    @property
    def enabled(self) -> bool:
        return self.settings.paypal_enabled

    @property
    def supported_methods(self) -> List[str]:
        return self._methods

    async def _get_access_token(self) -> str:
        """Fetch (and cache) an OAuth2 client-credentials token."""
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token

        response = await self._client.post(
            "/v1/oauth2/token",
            auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
        body = response.json()
        self._access_token = body["access_token"]
        # Refresh a minute before PayPal expires the token.
        self._token_expires_at = time.time() + max(int(body.get("expires_in", 0)) - 60, 0)
        return self._access_token

    async def _post(
        self,
        operation: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        async def _send() -> Dict[str, Any]:
            try:
                token = await self._get_access_token()
            except httpx.HTTPError as e:
                raise ProviderError(
                    "PayPal authentication failed", ProviderErrorType.TRANSIENT, original_error=e
                ) from e
            headers = {
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            }
            if request_id:
                headers["PayPal-Request-Id"] = request_id
            response = await self._client.post(path, json=payload or {}, headers=headers)
            response.raise_for_status()
            return response.json()

        start = time.time()
        try:
            body = await self.circuit_breaker.call(_send)
        except (httpx.HTTPError, ProviderError):
            metrics.record_provider_call(self.name, operation, "error", time.time() - start)
            raise
        metrics.record_provider_call(self.name, operation, "success", time.time() - start)
        return body

    def _order_body(self, request: PaymentRequest, correlation_id: str) -> Dict[str, Any]:
        return {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": request.order_id,
                    "description": request.description or f"Payment for order {request.order_id}",
                    "custom_id": correlation_id,
                    "amount": {
                        "currency_code": request.currency.upper(),
                        "value": f"{request.amount:.2f}",
                    },
                }
            ],
            "application_context": {
                "return_url": self.settings.paypal_return_url,
                "cancel_url": self.settings.paypal_cancel_url,
                "brand_name": self.settings.app_name,
                "landing_page": "BILLING",
                "user_action": "PAY_NOW",
            },
        }

    @staticmethod
    def _approval_url(order: Dict[str, Any]) -> str:
        for link in order.get("links", []):
            if link.get("rel") == "approve":
                return link.get("href", "")
        return ""

    @staticmethod
    def _capture_id(order: Dict[str, Any]) -> Optional[str]:
        for unit in order.get("purchase_units", []):
            captures = unit.get("payments", {}).get("captures", [])
            if captures:
                return captures[0].get("id")
        return None

    @staticmethod
    def _outcome_unknown(error: Exception) -> bool:
        """
        Whether a failed call may still have been applied by PayPal.

        ``ProviderError`` is only raised before the operation request is sent
        (open circuit, failed authentication). Timeouts, dropped connections
        and 5xx answers leave the outcome open; 4xx answers are rejections.
        """
        if isinstance(error, httpx.HTTPStatusError):
            return error.response.status_code >= 500
        return isinstance(error, httpx.TransportError)

    @staticmethod
    def _failure_reason(error: Exception, unknown: bool) -> str:
        if unknown:
            return OUTCOME_UNKNOWN
        if isinstance(error, httpx.HTTPStatusError):
            return REQUEST_REJECTED
        return SERVICE_UNAVAILABLE

    def _payment_error(
        self,
        request: PaymentRequest,
        error: Exception,
        correlation_id: str,
        paypal_order_id: Optional[str] = None,
    ) -> ProviderPaymentResult:
        unknown = self._outcome_unknown(error)
        logger.error(
            "paypal_payment_http_error",
            order_id=request.order_id,
            paypal_order_id=paypal_order_id,
            error=str(error),
            outcome_unknown=unknown,
            correlation_id=correlation_id,
        )
        return ProviderPaymentResult(
            is_success=False,
            status=PaymentStatus.PENDING if unknown else PaymentStatus.FAILED,
            transaction_id=paypal_order_id,
            provider_transaction_id=paypal_order_id,
            failure_reason=self._failure_reason(error, unknown),
            metadata={"paypal_order_id": paypal_order_id} if paypal_order_id else {},
        )

    async def process_payment(
        self, request: PaymentRequest, correlation_id: str
    ) -> ProviderPaymentResult:
        logger.info(
            "paypal_payment_started",
            order_id=request.order_id,
            amount=str(request.amount),
            currency=request.currency,
            correlation_id=correlation_id,
        )

        try:
            order = await self._post(
                "create_order",
                "/v2/checkout/orders",
                self._order_body(request, correlation_id),
                request_id=f"payment-{request.order_id}-{correlation_id}",
            )
        except (httpx.HTTPError, ProviderError) as e:
            return self._payment_error(request, e, correlation_id)

        status = order.get("status")

        if status == "CREATED":
            logger.info(
                "paypal_order_created",
                paypal_order_id=order["id"],
                correlation_id=correlation_id,
            )
            return ProviderPaymentResult(
                is_success=True,
                status=PaymentStatus.PENDING,
                transaction_id=order["id"],
                provider_transaction_id=order["id"],
                metadata={
                    "paypal_order_id": order["id"],
                    "approval_url": self._approval_url(order),
                },
            )

        if status == "APPROVED":
            try:
                captured = await self._post(
                    "capture_order", f"/v2/checkout/orders/{order['id']}/capture"
                )
            except (httpx.HTTPError, ProviderError) as e:
                return self._payment_error(
                    request, e, correlation_id, paypal_order_id=order["id"]
                )
            metadata = {"paypal_order_id": captured["id"]}
            capture_id = self._capture_id(captured)
            if capture_id:
                metadata["paypal_capture_id"] = capture_id
            logger.info(
                "paypal_payment_captured",
                paypal_order_id=captured["id"],
                correlation_id=correlation_id,
            )
            return ProviderPaymentResult(
                is_success=True,
                status=PaymentStatus.SUCCEEDED,
                transaction_id=captured["id"],
                provider_transaction_id=captured["id"],
                metadata=metadata,
            )

        logger.warning(
            "paypal_order_unexpected_status",
            status=status,
            order_id=request.order_id,
            correlation_id=correlation_id,
        )
        return ProviderPaymentResult(
            is_success=False,
            status=PaymentStatus.FAILED,
            failure_reason=f"PayPal order status: {status}",
        )

    async def process_refund(
        self,
        payment: PaymentRecord,
        amount: Decimal,
        reason: str,
        correlation_id: str,
    ) -> ProviderRefundResult:
        logger.info(
            "paypal_refund_started",
            payment_id=str(payment.id),
            amount=str(amount),
            correlation_id=correlation_id,
        )

        capture_id = payment.metadata.get("paypal_capture_id") or payment.provider_transaction_id
        if not capture_id:
            return ProviderRefundResult(
                is_success=False,
                status=RefundStatus.FAILED,
                failure_reason="Payment has no PayPal capture ID",
            )

        try:
            refund = await self._post(
                "refund_capture",
                f"/v2/payments/captures/{capture_id}/refund",
                {
                    "amount": {"value": f"{amount:.2f}", "currency_code": payment.currency},
                    "note_to_payer": reason,
                },
            )
        except (httpx.HTTPError, ProviderError) as e:
            unknown = self._outcome_unknown(e)
            logger.error(
                "paypal_refund_http_error",
                payment_id=str(payment.id),
                error=str(e),
                outcome_unknown=unknown,
                correlation_id=correlation_id,
            )
            return ProviderRefundResult(
                is_success=False,
                status=RefundStatus.PENDING if unknown else RefundStatus.FAILED,
                failure_reason=self._failure_reason(e, unknown),
            )

        refund_status = refund.get("status")
        if refund_status == "COMPLETED":
            is_success, status, failure = True, RefundStatus.SUCCEEDED, None
        elif refund_status == "PENDING":
            is_success, status, failure = True, RefundStatus.PROCESSING, None
        else:
            is_success, status = False, RefundStatus.FAILED
            failure = f"PayPal refund status: {refund_status}"

        logger.info(
            "paypal_refund_processed",
            status=refund_status,
            payment_id=str(payment.id),
            correlation_id=correlation_id,
        )
        return ProviderRefundResult(
            is_success=is_success,
            status=status,
            refund_id=refund.get("id"),
            provider_refund_id=refund.get("id"),
            failure_reason=failure,
            metadata={"paypal_refund_id": refund.get("id")},
        )

    async def save_method(
        self, request: SaveMethodRequest, correlation_id: str
    ) -> ProviderMethodResult:
        logger.info(
            "paypal_save_method_unsupported",
            customer_id=request.customer_id,
            correlation_id=correlation_id,
        )
        return ProviderMethodResult.unsupported(SAVE_UNSUPPORTED)

    async def delete_method(self, token: str, correlation_id: str) -> bool:
        logger.info(
            "paypal_delete_method_unsupported",
            correlation_id=correlation_id,
        )
        return False

    async def aclose(self) -> None:
        await self._client.aclose()
