"""Payment provider adapters and the registry that resolves them."""
from .base import CircuitOpenError, PaymentProvider, ProviderError, ProviderErrorType
from .circuit_breaker import CircuitBreaker
from .registry import ProviderLookup, ProviderRegistry, create_registry

__all__ = [
    "CircuitOpenError",
    "PaymentProvider",
    "ProviderError",
    "ProviderErrorType",
    "CircuitBreaker",
    "ProviderLookup",
    "ProviderRegistry",
    "create_registry",
]
