"""Database package: ORM models, connection handling and Ledger Store backends."""
from .connection import close_db, get_engine, get_session_factory, init_db
from .ledger import (
    DefaultMethodConflict,
    DuplicateOrderError,
    DuplicatePaymentMethodError,
    LedgerError,
    LedgerStore,
    PaymentNotRefundableError,
    RefundBalanceExceeded,
)
from .memory_ledger import InMemoryLedgerStore
from .models import Base, OutboxEvent, Payment, PaymentMethod, PaymentRefund
from .sql_ledger import SqlLedgerStore

__all__ = [
    "Base",
    "Payment",
    "PaymentRefund",
    "PaymentMethod",
    "OutboxEvent",
    "LedgerStore",
    "LedgerError",
    "DuplicateOrderError",
    "RefundBalanceExceeded",
    "PaymentNotRefundableError",
    "DuplicatePaymentMethodError",
    "DefaultMethodConflict",
    "SqlLedgerStore",
    "InMemoryLedgerStore",
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
]
