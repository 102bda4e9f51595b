"""API routes for checkouts, the payment gateway callback, and provisioning recovery."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool

from ..billing import ReconciliationOutcome
from ..errors import ServiceError
from ..schemas.billing import (
    CallbackAck,
    CheckoutResponse,
    PurgeResponse,
    ReconciliationResponse,
    RetrySweepResponse,
    SubscriptionCreateRequest,
    TopupCreateRequest,
)
from ..services.billing import get_reconciliation_service, get_subscription_service

logger = logging.getLogger("billing")

CALLBACK_TOKEN_HEADER = "x-callback-token"

_CALLBACK_MESSAGES = {
    ReconciliationOutcome.PROVISIONED: "Payment processed and service provisioned",
    ReconciliationOutcome.PROVISIONING_FAILED: "Payment recorded; provisioning queued for retry",
    ReconciliationOutcome.PAYMENT_FAILED: "Payment marked as failed",
    ReconciliationOutcome.BALANCE_CREDITED: "Payment processed and balance credited",
    ReconciliationOutcome.RECORDED: "Payment recorded",
    ReconciliationOutcome.ALREADY_PROCESSED: "Callback already processed",
}

router = APIRouter(prefix="/api", tags=["billing"])


@router.post("/subscriptions", response_model=CheckoutResponse)
def create_subscription(payload: SubscriptionCreateRequest) -> CheckoutResponse:
    service = get_subscription_service()
    try:
        result = service.create_subscription(
            user_id=payload.user_id,
            package_id=payload.package_id,
            payment_method=payload.payment_method,
        )
    except ServiceError as exc:
        raise exc.to_http_exception() from exc
    return CheckoutResponse.from_result(result, message="Subscription created successfully")


@router.post("/topups", response_model=CheckoutResponse)
def create_topup(payload: TopupCreateRequest) -> CheckoutResponse:
    service = get_subscription_service()
    try:
        result = service.create_topup(user_id=payload.user_id, amount=payload.amount)
    except ServiceError as exc:
        raise exc.to_http_exception() from exc
    return CheckoutResponse.from_result(result, message="Top-up created successfully")


@router.post("/payments/xendit/callback", response_model=CallbackAck)
async def receive_payment_callback(request: Request) -> CallbackAck:
    token = request.headers.get(CALLBACK_TOKEN_HEADER)
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    service = get_reconciliation_service()
    try:
        result = await run_in_threadpool(service.handle_notification, token, payload)
    except ServiceError as exc:
        raise exc.to_http_exception() from exc
    except Exception as exc:
        logger.exception("Unexpected failure while processing payment callback")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc

    return CallbackAck.from_result(result, message=_CALLBACK_MESSAGES[result.outcome])


@router.post("/admin/subscriptions/{subscription_id}/reprovision", response_model=ReconciliationResponse)
def reprovision_subscription(subscription_id: str) -> ReconciliationResponse:
    service = get_reconciliation_service()
    try:
        result = service.reprovision_subscription(subscription_id)
    except ServiceError as exc:
        raise exc.to_http_exception() from exc
    return ReconciliationResponse.from_result(result, message="Subscription provisioned")


@router.post("/admin/provisioning/retry", response_model=RetrySweepResponse)
def retry_provisioning(limit: int = Query(default=50, ge=1, le=500)) -> RetrySweepResponse:
    summary = get_reconciliation_service().retry_pending_provisioning(limit=limit)
    return RetrySweepResponse.from_summary(summary)


@router.post("/admin/checkouts/purge", response_model=PurgeResponse)
def purge_stale_checkouts() -> PurgeResponse:
    return PurgeResponse(removed=get_subscription_service().purge_stale_checkouts())
