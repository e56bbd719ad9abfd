"""Core payment orchestration logic."""
from .order_events import OrderEventHandler
from .orchestrator import PaymentError, PaymentOrchestrator, PaymentRejected
from .outbox import OutboxPublisher

__all__ = [
    "PaymentOrchestrator",
    "PaymentError",
    "PaymentRejected",
    "OutboxPublisher",
    "OrderEventHandler",
]
