"""Domain records, requests and result values."""
from .models import (
    CallContext,
    MethodDetails,
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
)
from .results import (
    ErrorCode,
    PaymentResult,
    ProviderMethodResult,
    ProviderPaymentResult,
    ProviderRefundResult,
    RefundResult,
    SaveMethodResult,
)

__all__ = [
    "CallContext",
    "ErrorCode",
    "MethodDetails",
    "OutboxMessage",
    "PaymentMethodRecord",
    "PaymentRecord",
    "PaymentRequest",
    "PaymentResult",
    "PaymentStatus",
    "ProviderMethodResult",
    "ProviderPaymentResult",
    "ProviderRefundResult",
    "RefundRecord",
    "RefundRequest",
    "RefundResult",
    "RefundStatus",
    "SaveMethodRequest",
    "SaveMethodResult",
    "merge_metadata",
    "to_money",
]
