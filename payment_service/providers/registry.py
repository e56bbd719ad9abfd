"""
Provider registry.

Resolves a provider by explicit name, by payment-method label or from the
configured default, and exposes enabled providers for discovery. Lookups never
raise: they return a ``ProviderLookup`` carrying either the provider or the
reason it could not be resolved.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import structlog

from payment_service.config import Settings, get_settings
from payment_service.domain.results import ErrorCode

from .base import PaymentProvider

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderLookup:
    provider: Optional[PaymentProvider] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.provider is not None

    @classmethod
    def found(cls, provider: PaymentProvider) -> "ProviderLookup":
        return cls(provider=provider)

    @classmethod
    def missing(cls, code: ErrorCode, message: str) -> "ProviderLookup":
        return cls(error_code=code, error_message=message)


class ProviderRegistry:
    """Registry of payment providers keyed by case-insensitive name."""

    def __init__(
        self,
        providers: Iterable[PaymentProvider] = (),
        default_provider: Optional[str] = None,
    ):
        self._providers: Dict[str, PaymentProvider] = {}
        self.default_provider = (default_provider or "").strip() or None
        for provider in providers:
            self.register(provider)

        logger.info(
            "provider_registry_initialized",
            providers=self.available_providers(),
            default_provider=self.default_provider,
        )

    def register(self, provider: PaymentProvider) -> None:
        self._providers[provider.name.lower()] = provider

    def get(self, name: Optional[str]) -> ProviderLookup:
        """Resolve a provider by explicit name."""
        if not name or not name.strip():
            return ProviderLookup.missing(
                ErrorCode.UNSUPPORTED_PROVIDER, "Provider name cannot be empty"
            )

        provider = self._providers.get(name.strip().lower())
        if provider is None:
            available = ", ".join(self.available_providers())
            return ProviderLookup.missing(
                ErrorCode.UNSUPPORTED_PROVIDER,
                f"Payment provider '{name}' is not supported. "
                f"Available providers: {available}",
            )

        if not provider.enabled:
            return ProviderLookup.missing(
                ErrorCode.PROVIDER_DISABLED,
                f"Payment provider '{name}' is not enabled. "
                "Please check the configuration.",
            )

        logger.debug("provider_resolved", provider=provider.name)
        return ProviderLookup.found(provider)

    def for_method(self, payment_method: str) -> ProviderLookup:
        """First enabled provider advertising ``payment_method``."""
        enabled = self.enabled_providers()
        for provider in enabled:
            if provider.supports(payment_method):
                logger.debug(
                    "provider_resolved_for_method",
                    provider=provider.name,
                    payment_method=payment_method,
                )
                return ProviderLookup.found(provider)

        supported = sorted({m for p in enabled for m in p.supported_methods})
        return ProviderLookup.missing(
            ErrorCode.NO_PROVIDER_FOR_METHOD,
            f"No enabled provider supports payment method '{payment_method}'. "
            f"Supported methods: {', '.join(supported)}",
        )

    def default(self) -> ProviderLookup:
        if not self.default_provider:
            return ProviderLookup.missing(
                ErrorCode.NO_DEFAULT_CONFIGURED,
                "No default payment provider configured.",
            )
        return self.get(self.default_provider)

    def resolve(
        self,
        provider_name: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> ProviderLookup:
        """Explicit name first, then payment-method label, then the default."""
        if provider_name and provider_name.strip():
            return self.get(provider_name)
        if payment_method and payment_method.strip():
            return self.for_method(payment_method)
        return self.default()

    def enabled_providers(self) -> List[PaymentProvider]:
        return [p for p in self._providers.values() if p.enabled]

    def supported_methods(self) -> Dict[str, List[str]]:
        """Enabled provider name -> supported payment-method labels."""
        return {p.name: p.describe() for p in self.enabled_providers()}

    def available_providers(self) -> List[str]:
        return list(self._providers.keys())

    def is_supported(self, name: str) -> bool:
        return name.strip().lower() in self._providers

    def is_enabled(self, name: str) -> bool:
        return self.get(name).ok

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()


def create_registry(settings: Optional[Settings] = None) -> ProviderRegistry:
    """Build the registry of configured providers."""
    from .paypal_provider import PayPalProvider
    from .stripe_provider import StripeProvider

    settings = settings or get_settings()
    return ProviderRegistry(
        providers=[StripeProvider(settings), PayPalProvider(settings)],
        default_provider=settings.default_provider,
    )
