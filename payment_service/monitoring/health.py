"""
Health checks for liveness/readiness probes.

Checks:
- Database connectivity
- Provider availability (enabled and circuit breaker not open)
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_service.database.connection import get_session_factory
from payment_service.providers.registry import ProviderRegistry

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - Provider availability check
    - Overall system health status
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        self.registry = registry
        self._session_factory = session_factory

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict[str, Any]: Database health status

        Raises:
            HealthCheckError: If database check fails
        """
        session_factory = self._session_factory or get_session_factory()
        try:
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}") from e

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    def check_providers(self) -> Dict[str, Any]:
        """
        Report enabled providers and their circuit breaker state.

        Raises:
            HealthCheckError: If no enabled provider is accepting calls
        """
        providers: Dict[str, Any] = {}
        for provider in self.registry.enabled_providers():
            breaker = getattr(provider, "circuit_breaker", None)
            state = breaker.state if breaker is not None else "closed"
            providers[provider.name] = {
                "circuit_breaker": state,
                "supported_methods": provider.describe(),
            }

        if not any(p["circuit_breaker"] != "open" for p in providers.values()):
            logger.error("provider_health_check_failed", providers=list(providers))
            raise HealthCheckError("No payment provider is available")

        return {
            "status": "healthy",
            "service": "providers",
            "providers": providers,
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks = {}
        all_healthy = True

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {
                "status": "unhealthy",
                "service": "database",
                "error": str(e),
            }
            all_healthy = False

        try:
            checks["providers"] = self.check_providers()
        except HealthCheckError as e:
            checks["providers"] = {
                "status": "unhealthy",
                "service": "providers",
                "error": str(e),
            }
            all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: verifies all dependencies are available."""
        return await self.check_all()
