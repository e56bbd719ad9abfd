"""Background workers for async processing."""
from .outbox_publisher import start_outbox_publisher

__all__ = ["start_outbox_publisher"]
