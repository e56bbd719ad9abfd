"""
Unit tests for health checks.
"""
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from conftest import FakeProvider
from payment_service.database.connection import create_session_factory
from payment_service.monitoring.health import HealthCheck, HealthCheckError
from payment_service.providers.circuit_breaker import CircuitBreaker
from payment_service.providers.registry import ProviderRegistry


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, Any]:
    engine = create_async_engine("sqlite+aiosqlite://")
    yield engine
    await engine.dispose()


class TestHealthCheck:
    """Test suite for HealthCheck."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_all_healthy(self, engine: AsyncEngine) -> None:
        registry = ProviderRegistry([FakeProvider()], default_provider="fake")
        health = HealthCheck(registry, create_session_factory(engine))

        result = await health.check_all()

        assert result["status"] == "healthy"
        assert result["checks"]["providers"]["providers"]["fake"]["supported_methods"] == ["card"]

    @pytest.mark.unit
    def test_no_available_provider(self) -> None:
        provider = FakeProvider("stripe")
        provider.circuit_breaker = CircuitBreaker("stripe")
        provider.circuit_breaker.state = "open"
        health = HealthCheck(ProviderRegistry([provider], default_provider="stripe"))

        with pytest.raises(HealthCheckError, match="No payment provider is available"):
            health.check_providers()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unhealthy_when_providers_disabled(self, engine: AsyncEngine) -> None:
        registry = ProviderRegistry([FakeProvider(enabled=False)], default_provider="fake")
        health = HealthCheck(registry, create_session_factory(engine))

        result = await health.readiness()

        assert result["status"] == "unhealthy"
        assert result["checks"]["database"]["status"] == "healthy"
        assert result["checks"]["providers"]["status"] == "unhealthy"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_liveness(self) -> None:
        health = HealthCheck(ProviderRegistry([]))
        assert (await health.liveness())["status"] == "alive"
