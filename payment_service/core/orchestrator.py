"""
Payment orchestrator.

Orchestrates the payment flows:
1. Validate input
2. Reject duplicates / over-refunds against the ledger
3. Resolve the provider
4. Persist a pending row before calling the provider
5. Call the provider
6. Merge the provider outcome into the row (and write the outbox event)
7. Return a normalized result

Expected failures come back as unsuccessful results carrying an ``ErrorCode``.
Nothing raised inside the flows escapes the public methods.
"""
import time
import uuid
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import structlog

from payment_service.config import Settings, get_settings
from payment_service.database.ledger import (
    DuplicateOrderError,
    DuplicatePaymentMethodError,
    LedgerStore,
    PaymentNotRefundableError,
    RefundBalanceExceeded,
)
from payment_service.domain.models import (
    CallContext,
    OutboxMessage,
    PaymentMethodRecord,
    PaymentRecord,
    PaymentRequest,
    PaymentStatus,
    RefundRecord,
    RefundRequest,
    RefundStatus,
    SaveMethodRequest,
    merge_metadata,
    to_money,
    utcnow,
)
from payment_service.domain.results import (
    ErrorCode,
    PaymentResult,
    RefundResult,
    SaveMethodResult,
)
from payment_service.monitoring.metrics import metrics
from payment_service.providers.base import PaymentProvider, to_minor_units
from payment_service.providers.registry import ProviderRegistry

logger = structlog.get_logger(__name__)

UNEXPECTED_PAYMENT_ERROR = "An unexpected error occurred while processing the payment"
UNEXPECTED_REFUND_ERROR = "An unexpected error occurred while processing the refund"
UNEXPECTED_METHOD_ERROR = "An unexpected error occurred while saving the payment method"

DEFAULT_PAYMENT_METHOD = "unknown"
DEFAULT_REFUND_REASON = "Refund requested"

_PAYMENT_OUTCOMES = (
    PaymentStatus.PENDING,
    PaymentStatus.PROCESSING,
    PaymentStatus.SUCCEEDED,
    PaymentStatus.FAILED,
)
_REFUND_OUTCOMES = (
    RefundStatus.PENDING,
    RefundStatus.PROCESSING,
    RefundStatus.SUCCEEDED,
    RefundStatus.FAILED,
)


class PaymentError(Exception):
    """Base exception for payment orchestration errors."""

    pass


class PaymentRejected(PaymentError):
    """An expected domain failure; converted to an unsuccessful result."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def _parse_id(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _positive_amount(value: Any, message: str) -> Decimal:
    try:
        amount = to_money(value)
    except (InvalidOperation, TypeError, ValueError):
        raise PaymentRejected(ErrorCode.INVALID_REQUEST, message)
    if not amount.is_finite() or amount <= 0:
        raise PaymentRejected(ErrorCode.INVALID_REQUEST, message)
    return amount


def _payment_result(
    payment: PaymentRecord,
    is_success: bool,
    error_code: Optional[ErrorCode] = None,
    error_message: Optional[str] = None,
) -> PaymentResult:
    return PaymentResult(
        is_success=is_success,
        payment_id=str(payment.id),
        order_id=payment.order_id,
        customer_id=payment.customer_id,
        status=payment.status,
        amount=payment.amount,
        currency=payment.currency,
        provider=payment.provider,
        payment_method=payment.payment_method,
        transaction_id=payment.transaction_id,
        provider_transaction_id=payment.provider_transaction_id,
        processed_at=payment.processed_at,
        error_code=error_code,
        error_message=error_message,
        metadata=dict(payment.metadata),
    )


def _refund_result(
    refund: RefundRecord,
    is_success: bool,
    error_code: Optional[ErrorCode] = None,
    error_message: Optional[str] = None,
) -> RefundResult:
    return RefundResult(
        is_success=is_success,
        refund_id=str(refund.id),
        payment_id=str(refund.payment_id),
        status=refund.status,
        amount=refund.amount,
        currency=refund.currency,
        provider_refund_id=refund.provider_refund_id,
        processed_at=refund.processed_at,
        error_code=error_code,
        error_message=error_message,
    )


class PaymentOrchestrator:
    """
    Payment orchestration engine.

    Coordinates the local ledger with the remote provider. It holds no locks:
    duplicate orders, refund balances and default-method swaps are enforced by
    the Ledger Store against durable state.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        registry: ProviderRegistry,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            ledger: Ledger Store backend
            registry: Provider registry used to resolve providers
            settings: Optional settings (defaults to the cached settings)
        """
        self.ledger = ledger
        self.registry = registry
        self.settings = settings or get_settings()

        logger.info(
            "payment_orchestrator_initialized",
            providers=registry.available_providers(),
            default_provider=registry.default_provider,
        )

    # Validation

    def _validate_payment_request(self, request: PaymentRequest) -> PaymentRequest:
        """
        Validate and normalize a payment request.

        Returns:
            PaymentRequest: Request with amount quantized and currency upper-cased

        Raises:
            PaymentRejected: If validation fails
        """
        if not request.order_id or not request.order_id.strip():
            raise PaymentRejected(ErrorCode.INVALID_REQUEST, "Order ID is required")

        amount = _positive_amount(request.amount, "Payment amount must be greater than zero")

        if amount > self.settings.max_payment_amount:
            raise PaymentRejected(
                ErrorCode.INVALID_REQUEST,
                f"Payment amount cannot exceed {self.settings.max_payment_amount}",
            )

        currency = (request.currency or self.settings.default_currency).strip().upper()
        if len(currency) != 3 or not currency.isalpha():
            raise PaymentRejected(
                ErrorCode.INVALID_REQUEST, "Currency must be a 3-letter ISO code"
            )

        return replace(
            request,
            order_id=request.order_id.strip(),
            amount=amount,
            currency=currency,
        )

    def _resolve(self, provider_name: Optional[str], payment_method: Optional[str]) -> PaymentProvider:
        lookup = self.registry.resolve(provider_name, payment_method)
        if not lookup.ok:
            raise PaymentRejected(lookup.error_code, lookup.error_message)
        return lookup.provider

    # Payments

    async def process_payment(
        self, request: PaymentRequest, ctx: CallContext
    ) -> PaymentResult:
        """
        Charge a customer for an order.

        Args:
            request: Payment request
            ctx: Caller identity and correlation id

        Returns:
            PaymentResult: Normalized outcome; never raises
        """
        log = logger.bind(
            correlation_id=ctx.correlation_id,
            user_id=ctx.user_id,
            order_id=request.order_id,
        )
        start_time = time.time()

        try:
            request = self._validate_payment_request(request)
        except PaymentRejected as e:
            log.warning("payment_validation_failed", error_code=e.code.value, reason=e.message)
            return PaymentResult.failure(e.code, e.message, order_id=request.order_id)

        try:
            return await self._process_payment(request, ctx, log)
        except PaymentRejected as e:
            log.warning("payment_rejected", error_code=e.code.value, reason=e.message)
            return PaymentResult.failure(
                e.code,
                e.message,
                order_id=request.order_id,
                customer_id=request.customer_id,
                amount=request.amount,
                currency=request.currency,
            )
        except Exception:
            log.exception("payment_processing_unexpected_error")
            return PaymentResult.failure(
                ErrorCode.UNEXPECTED_ERROR,
                UNEXPECTED_PAYMENT_ERROR,
                order_id=request.order_id,
            )
        finally:
            metrics.record_payment_duration(time.time() - start_time)

    async def _process_payment(
        self, request: PaymentRequest, ctx: CallContext, log: Any
    ) -> PaymentResult:
        # Duplicate-charge defense: must run before any side effect.
        if await self.ledger.find_succeeded_payment(request.order_id) is not None:
            raise PaymentRejected(
                ErrorCode.DUPLICATE_PAYMENT, "Payment already exists for this order"
            )

        provider = self._resolve(request.provider, request.payment_method)

        now = utcnow()
        payment = PaymentRecord(
            id=uuid.uuid4(),
            order_id=request.order_id,
            customer_id=request.customer_id,
            amount=request.amount,
            currency=request.currency,
            provider=provider.name,
            payment_method=request.payment_method or DEFAULT_PAYMENT_METHOD,
            status=PaymentStatus.PENDING,
            correlation_id=ctx.correlation_id,
            description=request.description,
            metadata=merge_metadata(
                request.metadata,
                {"correlation_id": ctx.correlation_id, "user_id": ctx.user_id},
            ),
            created_at=now,
            updated_at=now,
            created_by=ctx.user_id,
            updated_by=ctx.user_id,
        )

        try:
            await self.ledger.create_payment(payment)
        except DuplicateOrderError:
            raise PaymentRejected(
                ErrorCode.DUPLICATE_PAYMENT, "Payment already exists for this order"
            )

        log = log.bind(payment_id=str(payment.id), provider=provider.name)
        log.info("payment_pending_created", amount=str(payment.amount), currency=payment.currency)

        try:
            outcome = await provider.process_payment(request, ctx.correlation_id)
        except Exception as e:
            # Providers report ambiguous outcomes as pending results; a raise
            # is a failed attempt and releases the order for a retry.
            log.exception("provider_payment_call_failed")
            now = utcnow()
            failed = replace(
                payment,
                status=PaymentStatus.FAILED,
                failure_reason=f"Provider error: {type(e).__name__}",
                updated_at=now,
                updated_by=ctx.user_id,
                failed_at=now,
            )
            await self.ledger.update_payment(failed, self._payment_event(failed))
            metrics.record_payment_request(
                PaymentStatus.FAILED.value, payment.currency, provider.name
            )
            return _payment_result(
                failed,
                is_success=False,
                error_code=ErrorCode.UNEXPECTED_ERROR,
                error_message=UNEXPECTED_PAYMENT_ERROR,
            )

        status = outcome.status
        if status not in _PAYMENT_OUTCOMES:
            log.warning("provider_payment_status_invalid", status=str(status))
            status = PaymentStatus.FAILED

        now = utcnow()
        updated = replace(
            payment,
            status=status,
            transaction_id=outcome.transaction_id,
            provider_transaction_id=outcome.provider_transaction_id,
            failure_reason=outcome.failure_reason,
            metadata=merge_metadata(payment.metadata, outcome.metadata),
            updated_at=now,
            updated_by=ctx.user_id,
            processed_at=now if status == PaymentStatus.SUCCEEDED else None,
            failed_at=now if status == PaymentStatus.FAILED else None,
        )
        await self.ledger.update_payment(updated, self._payment_event(updated))

        metrics.record_payment_request(
            status.value,
            updated.currency,
            provider.name,
            to_minor_units(updated.amount),
        )
        log.info(
            "payment_processed",
            status=status.value,
            is_success=outcome.is_success,
            provider_transaction_id=updated.provider_transaction_id,
        )

        if outcome.is_success:
            return _payment_result(updated, is_success=True)
        return _payment_result(
            updated,
            is_success=False,
            error_code=ErrorCode.PROVIDER_DECLINED,
            error_message=outcome.failure_reason or "Payment was not completed",
        )

    @staticmethod
    def _payment_event(payment: PaymentRecord) -> OutboxMessage:
        return OutboxMessage(
            aggregate_id=payment.id,
            aggregate_type="payment",
            event_type=f"payment.{payment.status.value}",
            payload={
                "payment_id": str(payment.id),
                "order_id": payment.order_id,
                "customer_id": payment.customer_id,
                "amount": str(payment.amount),
                "currency": payment.currency,
                "provider": payment.provider,
                "status": payment.status.value,
                "provider_transaction_id": payment.provider_transaction_id,
                "failure_reason": payment.failure_reason,
                "correlation_id": payment.correlation_id,
            },
        )

    # Refunds

    async def process_refund(self, request: RefundRequest, ctx: CallContext) -> RefundResult:
        """
        Refund part or all of a succeeded payment.

        Args:
            request: Refund request
            ctx: Caller identity and correlation id

        Returns:
            RefundResult: Normalized outcome; never raises
        """
        log = logger.bind(
            correlation_id=ctx.correlation_id,
            user_id=ctx.user_id,
            payment_id=str(request.payment_id),
        )

        try:
            return await self._process_refund(request, ctx, log)
        except PaymentRejected as e:
            log.warning("refund_rejected", error_code=e.code.value, reason=e.message)
            return RefundResult.failure(e.code, e.message, payment_id=str(request.payment_id))
        except Exception:
            log.exception("refund_processing_unexpected_error")
            return RefundResult.failure(
                ErrorCode.UNEXPECTED_ERROR,
                UNEXPECTED_REFUND_ERROR,
                payment_id=str(request.payment_id),
            )

    async def _process_refund(
        self, request: RefundRequest, ctx: CallContext, log: Any
    ) -> RefundResult:
        amount = _positive_amount(request.amount, "Refund amount must be greater than zero")

        payment_id = _parse_id(request.payment_id)
        payment = await self.ledger.get_payment(payment_id) if payment_id else None
        if payment is None:
            raise PaymentRejected(ErrorCode.PAYMENT_NOT_FOUND, "Payment not found")

        if payment.status != PaymentStatus.SUCCEEDED:
            raise PaymentRejected(
                ErrorCode.PAYMENT_NOT_REFUNDABLE, "Only successful payments can be refunded"
            )

        # Early rejection without side effects; the store re-checks atomically.
        refunded = await self.ledger.refunded_total(payment.id)
        if refunded + amount > payment.amount:
            raise PaymentRejected(
                ErrorCode.REFUND_EXCEEDS_BALANCE, "Refund amount exceeds available balance"
            )

        # Refunds go back through the provider that took the payment.
        lookup = self.registry.get(payment.provider)
        if not lookup.ok:
            raise PaymentRejected(lookup.error_code, lookup.error_message)
        provider = lookup.provider

        now = utcnow()
        reason = request.reason or DEFAULT_REFUND_REASON
        refund = RefundRecord(
            id=uuid.uuid4(),
            payment_id=payment.id,
            amount=amount,
            currency=payment.currency,
            status=RefundStatus.PENDING,
            correlation_id=ctx.correlation_id,
            reason=reason,
            metadata=merge_metadata(
                request.metadata,
                {
                    "correlation_id": ctx.correlation_id,
                    "user_id": ctx.user_id,
                    "original_payment_id": str(payment.id),
                },
            ),
            created_at=now,
            updated_at=now,
            created_by=ctx.user_id,
            updated_by=ctx.user_id,
        )

        try:
            await self.ledger.create_refund_within_balance(refund)
        except RefundBalanceExceeded:
            raise PaymentRejected(
                ErrorCode.REFUND_EXCEEDS_BALANCE, "Refund amount exceeds available balance"
            )
        except PaymentNotRefundableError:
            raise PaymentRejected(
                ErrorCode.PAYMENT_NOT_REFUNDABLE, "Only successful payments can be refunded"
            )

        log = log.bind(refund_id=str(refund.id), provider=provider.name)
        log.info("refund_pending_created", amount=str(amount))

        try:
            outcome = await provider.process_refund(payment, amount, reason, ctx.correlation_id)
        except Exception as e:
            log.exception("provider_refund_call_failed")
            now = utcnow()
            failed = replace(
                refund,
                status=RefundStatus.FAILED,
                failure_reason=f"Provider error: {type(e).__name__}",
                updated_at=now,
                updated_by=ctx.user_id,
                failed_at=now,
            )
            await self.ledger.update_refund(failed, self._refund_event(failed, payment))
            metrics.record_refund_request(RefundStatus.FAILED.value, provider.name)
            return _refund_result(
                failed,
                is_success=False,
                error_code=ErrorCode.UNEXPECTED_ERROR,
                error_message=UNEXPECTED_REFUND_ERROR,
            )

        status = outcome.status
        if status not in _REFUND_OUTCOMES:
            log.warning("provider_refund_status_invalid", status=str(status))
            status = RefundStatus.FAILED

        now = utcnow()
        updated = replace(
            refund,
            status=status,
            provider_refund_id=outcome.provider_refund_id,
            failure_reason=outcome.failure_reason,
            metadata=merge_metadata(refund.metadata, outcome.metadata),
            updated_at=now,
            updated_by=ctx.user_id,
            processed_at=now if status == RefundStatus.SUCCEEDED else None,
            failed_at=now if status == RefundStatus.FAILED else None,
        )
        await self.ledger.update_refund(updated, self._refund_event(updated, payment))

        metrics.record_refund_request(status.value, provider.name)
        log.info("refund_processed", status=status.value, is_success=outcome.is_success)

        if outcome.is_success:
            return _refund_result(updated, is_success=True)
        return _refund_result(
            updated,
            is_success=False,
            error_code=ErrorCode.PROVIDER_DECLINED,
            error_message=outcome.failure_reason or "Refund was not completed",
        )

    @staticmethod
    def _refund_event(refund: RefundRecord, payment: PaymentRecord) -> OutboxMessage:
        return OutboxMessage(
            aggregate_id=refund.id,
            aggregate_type="refund",
            event_type=f"refund.{refund.status.value}",
            payload={
                "refund_id": str(refund.id),
                "payment_id": str(payment.id),
                "order_id": payment.order_id,
                "amount": str(refund.amount),
                "currency": refund.currency,
                "status": refund.status.value,
                "reason": refund.reason,
                "provider_refund_id": refund.provider_refund_id,
                "correlation_id": refund.correlation_id,
            },
        )

    # Payment methods

    async def save_payment_method(
        self, request: SaveMethodRequest, ctx: CallContext
    ) -> SaveMethodResult:
        """
        Tokenize a payment method with the provider and store it.

        Provider refusals are returned verbatim since the caller can usually
        act on them.
        """
        log = logger.bind(
            correlation_id=ctx.correlation_id,
            user_id=ctx.user_id,
            customer_id=request.customer_id,
        )

        try:
            result = await self._save_payment_method(request, ctx, log)
        except PaymentRejected as e:
            log.warning("payment_method_rejected", error_code=e.code.value, reason=e.message)
            metrics.record_payment_method_operation("save", "rejected")
            return SaveMethodResult.failure(e.code, e.message)
        except Exception:
            log.exception("payment_method_save_unexpected_error")
            metrics.record_payment_method_operation("save", "error")
            return SaveMethodResult.failure(ErrorCode.UNEXPECTED_ERROR, UNEXPECTED_METHOD_ERROR)

        metrics.record_payment_method_operation("save", "success")
        return result

    async def _save_payment_method(
        self, request: SaveMethodRequest, ctx: CallContext, log: Any
    ) -> SaveMethodResult:
        if not request.customer_id or not request.customer_id.strip():
            raise PaymentRejected(ErrorCode.INVALID_REQUEST, "Customer ID is required")

        if request.provider and request.provider.strip():
            lookup = self.registry.get(request.provider)
        else:
            lookup = self.registry.default()
        if not lookup.ok:
            raise PaymentRejected(lookup.error_code, lookup.error_message)
        provider = lookup.provider

        outcome = await provider.save_method(request, ctx.correlation_id)
        if not outcome.is_success:
            raise PaymentRejected(
                ErrorCode.PROVIDER_DECLINED,
                outcome.failure_reason or "Payment method could not be saved",
            )
        if not outcome.provider_token_id:
            raise PaymentRejected(
                ErrorCode.PROVIDER_DECLINED, "Provider did not return a payment method token"
            )

        display_name = request.display_name
        if not display_name and outcome.brand and outcome.last4:
            display_name = f"{outcome.brand.title()} ending in {outcome.last4}"

        now = utcnow()
        method = PaymentMethodRecord(
            id=uuid.uuid4(),
            customer_id=request.customer_id,
            provider=provider.name,
            provider_token_id=outcome.provider_token_id,
            method_type=request.method_type or "card",
            brand=outcome.brand,
            last4=outcome.last4,
            expiry_month=outcome.expiry_month,
            expiry_year=outcome.expiry_year,
            display_name=display_name,
            is_default=request.is_default,
            metadata=merge_metadata(outcome.metadata, {"correlation_id": ctx.correlation_id}),
            created_at=now,
            updated_at=now,
            created_by=ctx.user_id,
            updated_by=ctx.user_id,
        )

        try:
            await self.ledger.create_payment_method(method, self._method_event(method, "saved"))
        except DuplicatePaymentMethodError:
            raise PaymentRejected(
                ErrorCode.DUPLICATE_PAYMENT_METHOD, "Payment method already saved"
            )

        log.info(
            "payment_method_saved",
            payment_method_id=str(method.id),
            provider=provider.name,
            is_default=method.is_default,
        )
        return SaveMethodResult(
            is_success=True,
            payment_method_id=str(method.id),
            provider=method.provider,
            provider_token_id=method.provider_token_id,
            brand=method.brand,
            last4=method.last4,
            expiry_month=method.expiry_month,
            expiry_year=method.expiry_year,
            is_default=method.is_default,
        )

    @staticmethod
    def _method_event(method: PaymentMethodRecord, action: str) -> OutboxMessage:
        return OutboxMessage(
            aggregate_id=method.id,
            aggregate_type="payment_method",
            event_type=f"payment_method.{action}",
            payload={
                "payment_method_id": str(method.id),
                "customer_id": method.customer_id,
                "provider": method.provider,
                "is_default": method.is_default,
            },
        )

    async def delete_payment_method(self, method_id: str, ctx: CallContext) -> bool:
        """
        Delete a saved payment method.

        The provider revoke is best effort; the local row is removed even when
        the provider refuses or fails.

        Returns:
            bool: False if the method does not exist or could not be deleted
        """
        log = logger.bind(
            correlation_id=ctx.correlation_id,
            user_id=ctx.user_id,
            payment_method_id=str(method_id),
        )

        parsed = _parse_id(method_id)
        if parsed is None:
            log.info("payment_method_not_found")
            return False

        try:
            method = await self.ledger.get_payment_method(parsed)
        except Exception:
            log.exception("payment_method_lookup_failed")
            return False
        if method is None:
            log.info("payment_method_not_found")
            return False

        await self._revoke_remote(method, ctx, log)

        try:
            deleted = await self.ledger.delete_payment_method(
                method.id, self._method_event(method, "deleted")
            )
        except Exception:
            log.exception("payment_method_delete_failed")
            metrics.record_payment_method_operation("delete", "error")
            return False

        metrics.record_payment_method_operation("delete", "success" if deleted else "not_found")
        log.info("payment_method_deleted", deleted=deleted)
        return deleted

    async def _revoke_remote(self, method: PaymentMethodRecord, ctx: CallContext, log: Any) -> None:
        lookup = self.registry.get(method.provider)
        if not lookup.ok:
            log.warning(
                "payment_method_remote_revoke_skipped",
                provider=method.provider,
                reason=lookup.error_message,
            )
            return

        try:
            revoked = await lookup.provider.delete_method(
                method.provider_token_id, ctx.correlation_id
            )
        except Exception:
            log.exception("payment_method_remote_revoke_error", provider=method.provider)
            return

        if not revoked:
            log.warning("payment_method_remote_revoke_failed", provider=method.provider)

    # Read paths

    async def get_payment(
        self, payment_id: str, ctx: Optional[CallContext] = None
    ) -> Optional[PaymentRecord]:
        parsed = _parse_id(payment_id)
        if parsed is None:
            return None
        try:
            return await self.ledger.get_payment(parsed)
        except Exception:
            logger.exception(
                "payment_lookup_failed",
                payment_id=str(payment_id),
                correlation_id=ctx.correlation_id if ctx else None,
            )
            return None

    async def get_payment_by_order(
        self, order_id: str, ctx: Optional[CallContext] = None
    ) -> Optional[PaymentRecord]:
        if not order_id:
            return None
        try:
            return await self.ledger.get_payment_by_order(order_id)
        except Exception:
            logger.exception(
                "payment_lookup_by_order_failed",
                order_id=order_id,
                correlation_id=ctx.correlation_id if ctx else None,
            )
            return None

    async def list_payments(
        self,
        customer_id: Optional[str] = None,
        order_id: Optional[str] = None,
        skip: int = 0,
        take: int = 50,
        ctx: Optional[CallContext] = None,
    ) -> List[PaymentRecord]:
        """Payments newest first; ``take`` is clamped to ``max_page_size``."""
        skip = max(skip, 0)
        take = max(1, min(take, self.settings.max_page_size))
        try:
            return await self.ledger.list_payments(
                customer_id=customer_id, order_id=order_id, skip=skip, take=take
            )
        except Exception:
            logger.exception(
                "payment_list_failed",
                customer_id=customer_id,
                order_id=order_id,
                correlation_id=ctx.correlation_id if ctx else None,
            )
            return []

    async def list_payment_methods(
        self, customer_id: str, ctx: Optional[CallContext] = None
    ) -> List[PaymentMethodRecord]:
        if not customer_id:
            return []
        try:
            return await self.ledger.list_payment_methods(customer_id)
        except Exception:
            logger.exception(
                "payment_method_list_failed",
                customer_id=customer_id,
                correlation_id=ctx.correlation_id if ctx else None,
            )
            return []

    async def refunded_total(self, payment_id: str) -> Decimal:
        parsed = _parse_id(payment_id)
        if parsed is None:
            return Decimal("0.00")
        return await self.ledger.refunded_total(parsed)

    def list_providers(self) -> Dict[str, List[str]]:
        """Enabled providers and the payment-method labels each supports."""
        return self.registry.supported_methods()
