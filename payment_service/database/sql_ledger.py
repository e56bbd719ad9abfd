"""
SQLAlchemy implementation of the Ledger Store.

Invariants are enforced by the database:
- ``uq_payments_live_order`` rejects a second live payment for an order
- refund inserts run under a row lock on the parent payment
- ``uq_payment_methods_customer_default`` rejects a second default; the
  clear-then-insert transaction is retried when a concurrent writer wins
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from payment_service.domain.models import (
    LIVE_PAYMENT_STATUSES,
    RESERVED_REFUND_STATUSES,
    OutboxMessage,
    PaymentMethodRecord,
    PaymentRecord,
    PaymentStatus,
    RefundRecord,
    RefundStatus,
    to_money,
    utcnow,
)

from .ledger import (
    DefaultMethodConflict,
    DuplicateOrderError,
    DuplicatePaymentMethodError,
    PaymentNotRefundableError,
    RefundBalanceExceeded,
)
from .models import OutboxEvent, Payment, PaymentMethod, PaymentRefund

logger = structlog.get_logger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _refund_to_record(row: PaymentRefund) -> RefundRecord:
    return RefundRecord(
        id=row.id,
        payment_id=row.payment_id,
        amount=to_money(row.amount),
        currency=row.currency,
        status=RefundStatus(row.status),
        correlation_id=row.correlation_id,
        reason=row.reason,
        provider_refund_id=row.provider_refund_id,
        failure_reason=row.failure_reason,
        metadata=dict(row.metadata_ or {}),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        processed_at=_aware(row.processed_at),
        failed_at=_aware(row.failed_at),
        created_by=row.created_by,
        updated_by=row.updated_by,
    )


def _payment_to_record(row: Payment) -> PaymentRecord:
    return PaymentRecord(
        id=row.id,
        order_id=row.order_id,
        customer_id=row.customer_id,
        amount=to_money(row.amount),
        currency=row.currency,
        provider=row.provider,
        payment_method=row.payment_method,
        status=PaymentStatus(row.status),
        correlation_id=row.correlation_id,
        description=row.description,
        transaction_id=row.transaction_id,
        provider_transaction_id=row.provider_transaction_id,
        failure_reason=row.failure_reason,
        metadata=dict(row.metadata_ or {}),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        processed_at=_aware(row.processed_at),
        failed_at=_aware(row.failed_at),
        created_by=row.created_by,
        updated_by=row.updated_by,
        refunds=tuple(_refund_to_record(r) for r in row.refunds),
    )


def _method_to_record(row: PaymentMethod) -> PaymentMethodRecord:
    return PaymentMethodRecord(
        id=row.id,
        customer_id=row.customer_id,
        provider=row.provider,
        provider_token_id=row.provider_token_id,
        method_type=row.method_type,
        brand=row.brand,
        last4=row.last4,
        expiry_month=row.expiry_month,
        expiry_year=row.expiry_year,
        display_name=row.display_name,
        is_default=row.is_default,
        metadata=dict(row.metadata_ or {}),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        created_by=row.created_by,
        updated_by=row.updated_by,
    )


def _outbox_row(event: OutboxMessage) -> OutboxEvent:
    return OutboxEvent(
        aggregate_id=event.aggregate_id,
        aggregate_type=event.aggregate_type,
        event_type=event.event_type,
        payload=dict(event.payload),
        published=False,
        created_at=utcnow(),
    )


class SqlLedgerStore:
    """Ledger Store backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # Payments

    async def create_payment(self, payment: PaymentRecord) -> PaymentRecord:
        """
        Insert a pending payment.

        Raises:
            DuplicateOrderError: If the live-order index rejects the insert
        """
        async with self._session_factory() as db:
            db.add(
                Payment(
                    id=payment.id,
                    order_id=payment.order_id,
                    customer_id=payment.customer_id,
                    amount=payment.amount,
                    currency=payment.currency,
                    status=payment.status.value,
                    provider=payment.provider,
                    payment_method=payment.payment_method,
                    description=payment.description,
                    transaction_id=payment.transaction_id,
                    provider_transaction_id=payment.provider_transaction_id,
                    failure_reason=payment.failure_reason,
                    correlation_id=payment.correlation_id,
                    metadata_=dict(payment.metadata),
                    created_at=payment.created_at,
                    updated_at=payment.updated_at,
                    processed_at=payment.processed_at,
                    failed_at=payment.failed_at,
                    created_by=payment.created_by,
                    updated_by=payment.updated_by,
                )
            )
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                if await self._has_live_payment(db, payment.order_id):
                    raise DuplicateOrderError(payment.order_id) from e
                raise

        logger.info(
            "payment_row_created",
            payment_id=str(payment.id),
            order_id=payment.order_id,
            correlation_id=payment.correlation_id,
        )
        return payment

    async def _has_live_payment(self, db: AsyncSession, order_id: str) -> bool:
        stmt = (
            select(Payment.id)
            .where(Payment.order_id == order_id)
            .where(Payment.status.in_([s.value for s in LIVE_PAYMENT_STATUSES]))
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def update_payment(
        self, payment: PaymentRecord, event: Optional[OutboxMessage] = None
    ) -> PaymentRecord:
        async with self._session_factory() as db:
            async with db.begin():
                row = await db.get(Payment, payment.id)
                if row is None:
                    raise LookupError(f"Payment {payment.id} not found")
                row.status = payment.status.value
                row.transaction_id = payment.transaction_id
                row.provider_transaction_id = payment.provider_transaction_id
                row.failure_reason = payment.failure_reason
                row.metadata_ = dict(payment.metadata)
                row.updated_at = payment.updated_at
                row.processed_at = payment.processed_at
                row.failed_at = payment.failed_at
                row.updated_by = payment.updated_by
                if event is not None:
                    db.add(_outbox_row(event))
        return payment

    async def get_payment(self, payment_id: uuid.UUID) -> Optional[PaymentRecord]:
        async with self._session_factory() as db:
            row = await db.get(Payment, payment_id)
            return _payment_to_record(row) if row is not None else None

    async def find_succeeded_payment(self, order_id: str) -> Optional[PaymentRecord]:
        stmt = (
            select(Payment)
            .where(Payment.order_id == order_id)
            .where(Payment.status == PaymentStatus.SUCCEEDED.value)
            .limit(1)
        )
        async with self._session_factory() as db:
            row = (await db.execute(stmt)).scalar_one_or_none()
            return _payment_to_record(row) if row is not None else None

    async def get_payment_by_order(self, order_id: str) -> Optional[PaymentRecord]:
        stmt = (
            select(Payment)
            .where(Payment.order_id == order_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        async with self._session_factory() as db:
            row = (await db.execute(stmt)).scalar_one_or_none()
            return _payment_to_record(row) if row is not None else None

    async def list_payments(
        self,
        customer_id: Optional[str] = None,
        order_id: Optional[str] = None,
        skip: int = 0,
        take: int = 50,
    ) -> List[PaymentRecord]:
        stmt = select(Payment)
        if customer_id:
            stmt = stmt.where(Payment.customer_id == customer_id)
        if order_id:
            stmt = stmt.where(Payment.order_id == order_id)
        stmt = stmt.order_by(Payment.created_at.desc()).offset(skip).limit(take)

        async with self._session_factory() as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [_payment_to_record(row) for row in rows]

    # Refunds

    async def create_refund_within_balance(self, refund: RefundRecord) -> RefundRecord:
        """
        Lock the payment row, sum reserved refunds and insert the new refund.

        Raises:
            PaymentNotRefundableError: If the payment is missing or not succeeded
            RefundBalanceExceeded: If the refund does not fit the remaining balance
        """
        async with self._session_factory() as db:
            async with db.begin():
                locked = await db.execute(
                    select(Payment.amount, Payment.status)
                    .where(Payment.id == refund.payment_id)
                    .with_for_update()
                )
                payment = locked.one_or_none()
                if payment is None or payment.status != PaymentStatus.SUCCEEDED.value:
                    raise PaymentNotRefundableError(str(refund.payment_id))

                reserved = await db.execute(
                    select(func.coalesce(func.sum(PaymentRefund.amount), 0))
                    .where(PaymentRefund.payment_id == refund.payment_id)
                    .where(
                        PaymentRefund.status.in_([s.value for s in RESERVED_REFUND_STATUSES])
                    )
                )
                reserved_total = to_money(reserved.scalar_one())
                if reserved_total + refund.amount > to_money(payment.amount):
                    raise RefundBalanceExceeded(reserved_total)

                db.add(
                    PaymentRefund(
                        id=refund.id,
                        payment_id=refund.payment_id,
                        amount=refund.amount,
                        currency=refund.currency,
                        status=refund.status.value,
                        reason=refund.reason,
                        provider_refund_id=refund.provider_refund_id,
                        failure_reason=refund.failure_reason,
                        correlation_id=refund.correlation_id,
                        metadata_=dict(refund.metadata),
                        created_at=refund.created_at,
                        updated_at=refund.updated_at,
                        created_by=refund.created_by,
                        updated_by=refund.updated_by,
                    )
                )
        return refund

    async def update_refund(
        self, refund: RefundRecord, event: Optional[OutboxMessage] = None
    ) -> RefundRecord:
        async with self._session_factory() as db:
            async with db.begin():
                row = await db.get(PaymentRefund, refund.id)
                if row is None:
                    raise LookupError(f"Refund {refund.id} not found")
                row.status = refund.status.value
                row.provider_refund_id = refund.provider_refund_id
                row.failure_reason = refund.failure_reason
                row.metadata_ = dict(refund.metadata)
                row.updated_at = refund.updated_at
                row.processed_at = refund.processed_at
                row.failed_at = refund.failed_at
                row.updated_by = refund.updated_by
                if event is not None:
                    db.add(_outbox_row(event))
        return refund

    async def refunded_total(self, payment_id: uuid.UUID) -> Decimal:
        stmt = (
            select(func.coalesce(func.sum(PaymentRefund.amount), 0))
            .where(PaymentRefund.payment_id == payment_id)
            .where(PaymentRefund.status == RefundStatus.SUCCEEDED.value)
        )
        async with self._session_factory() as db:
            return to_money((await db.execute(stmt)).scalar_one())

    # Payment methods

    @retry(
        retry=retry_if_exception_type(DefaultMethodConflict),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
        reraise=True,
    )
    async def create_payment_method(
        self, method: PaymentMethodRecord, event: Optional[OutboxMessage] = None
    ) -> PaymentMethodRecord:
        """
        Clear other defaults (when needed) and insert the method in one transaction.

        Raises:
            DuplicatePaymentMethodError: If the provider token is already saved
            DefaultMethodConflict: If a concurrent default survived every retry
        """
        async with self._session_factory() as db:
            try:
                async with db.begin():
                    if method.is_default:
                        await db.execute(
                            update(PaymentMethod)
                            .where(PaymentMethod.customer_id == method.customer_id)
                            .where(PaymentMethod.is_default.is_(True))
                            .values(
                                is_default=False,
                                updated_at=method.updated_at,
                                updated_by=method.updated_by,
                            )
                        )
                    db.add(
                        PaymentMethod(
                            id=method.id,
                            customer_id=method.customer_id,
                            provider=method.provider,
                            provider_token_id=method.provider_token_id,
                            method_type=method.method_type,
                            brand=method.brand,
                            last4=method.last4,
                            expiry_month=method.expiry_month,
                            expiry_year=method.expiry_year,
                            display_name=method.display_name,
                            is_default=method.is_default,
                            metadata_=dict(method.metadata),
                            created_at=method.created_at,
                            updated_at=method.updated_at,
                            created_by=method.created_by,
                            updated_by=method.updated_by,
                        )
                    )
                    if event is not None:
                        db.add(_outbox_row(event))
            except IntegrityError as e:
                if await self._token_exists(method.provider, method.provider_token_id):
                    raise DuplicatePaymentMethodError(method.provider_token_id) from e
                if method.is_default:
                    logger.warning(
                        "default_payment_method_conflict",
                        customer_id=method.customer_id,
                    )
                    raise DefaultMethodConflict(method.customer_id) from e
                raise
        return method

    async def _token_exists(self, provider: str, token: str) -> bool:
        stmt = (
            select(PaymentMethod.id)
            .where(PaymentMethod.provider == provider)
            .where(PaymentMethod.provider_token_id == token)
        )
        async with self._session_factory() as db:
            return (await db.execute(stmt)).scalar_one_or_none() is not None

    async def get_payment_method(self, method_id: uuid.UUID) -> Optional[PaymentMethodRecord]:
        async with self._session_factory() as db:
            row = await db.get(PaymentMethod, method_id)
            return _method_to_record(row) if row is not None else None

    async def delete_payment_method(
        self, method_id: uuid.UUID, event: Optional[OutboxMessage] = None
    ) -> bool:
        async with self._session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    delete(PaymentMethod).where(PaymentMethod.id == method_id)
                )
                deleted = result.rowcount > 0
                if deleted and event is not None:
                    db.add(_outbox_row(event))
        return deleted

    async def list_payment_methods(self, customer_id: str) -> List[PaymentMethodRecord]:
        stmt = (
            select(PaymentMethod)
            .where(PaymentMethod.customer_id == customer_id)
            .order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at.desc())
        )
        async with self._session_factory() as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [_method_to_record(row) for row in rows]
