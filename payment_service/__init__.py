"""Payment orchestration service: payments, refunds and stored payment methods."""

__version__ = "0.1.0"
