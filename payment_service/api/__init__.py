"""FastAPI application and routes."""
from .main import app, create_app
from .schemas import (
    PaymentResponse,
    ProcessPaymentRequest,
    ProcessRefundRequest,
    RefundResponse,
    SavePaymentMethodRequest,
)

__all__ = [
    "app",
    "create_app",
    "ProcessPaymentRequest",
    "PaymentResponse",
    "ProcessRefundRequest",
    "RefundResponse",
    "SavePaymentMethodRequest",
]
