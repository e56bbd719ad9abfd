"""FastAPI dependencies: services from app state and the per-request call context."""
from typing import Optional

from fastapi import Header, Request

from payment_service.core.order_events import OrderEventHandler
from payment_service.core.orchestrator import PaymentOrchestrator
from payment_service.domain.models import SYSTEM_USER, CallContext
from payment_service.monitoring.health import HealthCheck


def get_orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.orchestrator


def get_order_event_handler(request: Request) -> OrderEventHandler:
    return OrderEventHandler(request.app.state.orchestrator)


def get_health_check(request: Request) -> HealthCheck:
    return request.app.state.health_check


def get_call_context(
    request: Request,
    x_user_id: Optional[str] = Header(default=None),
) -> CallContext:
    """
    Caller identity and correlation id for the current request.

    The correlation id is assigned by the request middleware.
    """
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        return CallContext.new(x_user_id)
    return CallContext(correlation_id=correlation_id, user_id=x_user_id or SYSTEM_USER)
