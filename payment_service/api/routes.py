"""
API routes for payment orchestration.

Thin adapter: every route delegates to ``PaymentOrchestrator`` and maps the
structured result onto an HTTP status.
"""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from payment_service.core.order_events import OrderEventHandler
from payment_service.core.orchestrator import PaymentOrchestrator
from payment_service.domain.models import CallContext
from payment_service.domain.results import ErrorCode
from payment_service.monitoring.health import HealthCheck

from .dependencies import (
    get_call_context,
    get_health_check,
    get_order_event_handler,
    get_orchestrator,
)
from .schemas import (
    HealthCheckResponse,
    PaymentDetailResponse,
    PaymentMethodResponse,
    PaymentResponse,
    ProcessPaymentRequest,
    ProcessRefundRequest,
    ProvidersResponse,
    RefundResponse,
    SavePaymentMethodRequest,
    SavePaymentMethodResponse,
)

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/payments", tags=["payments"])
payment_method_router = APIRouter(prefix="/payment-methods", tags=["payment-methods"])
monitoring_router = APIRouter(tags=["monitoring"])
order_event_router = APIRouter(prefix="/events/orders", tags=["order-events"])

ERROR_STATUS_CODES = {
    ErrorCode.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorCode.DUPLICATE_PAYMENT: status.HTTP_409_CONFLICT,
    ErrorCode.PAYMENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.PAYMENT_NOT_REFUNDABLE: status.HTTP_409_CONFLICT,
    ErrorCode.REFUND_EXCEEDS_BALANCE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.UNSUPPORTED_PROVIDER: status.HTTP_400_BAD_REQUEST,
    ErrorCode.PROVIDER_DISABLED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NO_PROVIDER_FOR_METHOD: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NO_DEFAULT_CONFIGURED: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.DUPLICATE_PAYMENT_METHOD: status.HTTP_409_CONFLICT,
    ErrorCode.PROVIDER_DECLINED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.UNEXPECTED_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _status_for(error_code: Optional[ErrorCode]) -> int:
    return ERROR_STATUS_CODES.get(error_code, status.HTTP_400_BAD_REQUEST)


@payment_router.post(
    "",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Process a payment",
    description="Charge a customer for an order through the selected provider",
)
async def process_payment(
    body: ProcessPaymentRequest,
    response: Response,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
) -> PaymentResponse:
    logger.info(
        "api_process_payment_request",
        order_id=body.order_id,
        amount=str(body.amount),
        currency=body.currency,
    )
    result = await orchestrator.process_payment(body.to_domain(), ctx)
    if not result.is_success:
        response.status_code = _status_for(result.error_code)
    return PaymentResponse.model_validate(result)


@payment_router.get(
    "/providers",
    response_model=ProvidersResponse,
    summary="List payment providers",
    description="Enabled providers and the payment methods each supports",
)
async def list_providers(
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> ProvidersResponse:
    return ProvidersResponse(
        default_provider=orchestrator.registry.default_provider,
        providers=orchestrator.list_providers(),
    )


@payment_router.get(
    "/order/{order_id}",
    response_model=PaymentDetailResponse,
    summary="Get the latest payment for an order",
)
async def get_payment_by_order(
    order_id: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
) -> PaymentDetailResponse:
    payment = await orchestrator.get_payment_by_order(order_id, ctx)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return PaymentDetailResponse.model_validate(payment)


@payment_router.get(
    "",
    response_model=List[PaymentDetailResponse],
    summary="List payments",
    description="Payments newest first, optionally filtered by customer or order",
)
async def list_payments(
    customer_id: Optional[str] = Query(default=None),
    order_id: Optional[str] = Query(default=None),
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=50, ge=1),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
) -> List[PaymentDetailResponse]:
    payments = await orchestrator.list_payments(
        customer_id=customer_id, order_id=order_id, skip=skip, take=take, ctx=ctx
    )
    return [PaymentDetailResponse.model_validate(p) for p in payments]


@payment_router.get(
    "/{payment_id}",
    response_model=PaymentDetailResponse,
    summary="Get a payment",
)
async def get_payment(
    payment_id: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
) -> PaymentDetailResponse:
    payment = await orchestrator.get_payment(payment_id, ctx)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return PaymentDetailResponse.model_validate(payment)


@payment_router.post(
    "/{payment_id}/refund",
    response_model=RefundResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Refund a payment",
    description="Full or partial refund of a succeeded payment",
)
async def process_refund(
    payment_id: str,
    body: ProcessRefundRequest,
    response: Response,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
) -> RefundResponse:
    logger.info("api_process_refund_request", payment_id=payment_id, amount=str(body.amount))
    result = await orchestrator.process_refund(body.to_domain(payment_id), ctx)
    if not result.is_success:
        response.status_code = _status_for(result.error_code)
    return RefundResponse.model_validate(result)


@payment_method_router.post(
    "",
    response_model=SavePaymentMethodResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Save a payment method",
)
async def save_payment_method(
    body: SavePaymentMethodRequest,
    response: Response,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
) -> SavePaymentMethodResponse:
    result = await orchestrator.save_payment_method(body.to_domain(), ctx)
    if not result.is_success:
        response.status_code = _status_for(result.error_code)
    return SavePaymentMethodResponse.model_validate(result)


@payment_method_router.get(
    "/{customer_id}",
    response_model=List[PaymentMethodResponse],
    summary="List a customer's payment methods",
    description="Default method first, then newest first",
)
async def list_payment_methods(
    customer_id: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
) -> List[PaymentMethodResponse]:
    methods = await orchestrator.list_payment_methods(customer_id, ctx)
    return [PaymentMethodResponse.model_validate(m) for m in methods]


@payment_method_router.delete(
    "/{payment_method_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a payment method",
)
async def delete_payment_method(
    payment_method_id: str,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    ctx: CallContext = Depends(get_call_context),
) -> Response:
    deleted = await orchestrator.delete_payment_method(payment_method_id, ctx)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Payment method not found"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Order events always answer 200; the outcome is reported in the body.


@order_event_router.post("/order-created", summary="Consume an order.created event")
async def order_created(
    payload: Dict[str, Any] = Body(...),
    handler: OrderEventHandler = Depends(get_order_event_handler),
) -> Dict[str, Any]:
    return await handler.handle("order.created", payload)


@order_event_router.post("/order-cancelled", summary="Consume an order.cancelled event")
async def order_cancelled(
    payload: Dict[str, Any] = Body(...),
    handler: OrderEventHandler = Depends(get_order_event_handler),
) -> Dict[str, Any]:
    return await handler.handle("order.cancelled", payload)
