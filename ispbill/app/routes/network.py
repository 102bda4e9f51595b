"""Admin API routes for router configuration and monitoring."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Response, status

from ..errors import ServiceError
from ..provisioning import RouterNotConfiguredError, ServiceType
from ..schemas.network import (
    RouterAccountsResponse,
    RouterConfigListResponse,
    RouterConfigOut,
    RouterConfigRequest,
    RouterStatusResponse,
)
from ..services.billing import get_router_client_provider, get_router_config_service

logger = logging.getLogger("network")

router = APIRouter(prefix="/api/admin", tags=["network"])

_ACCOUNT_TYPES = {"pppoe", "hotspot", "active"}


@router.get("/router-configs", response_model=RouterConfigListResponse)
def list_router_configs() -> RouterConfigListResponse:
    configs = get_router_config_service().list_configs()
    return RouterConfigListResponse(configs=[RouterConfigOut.from_config(config) for config in configs])


@router.put("/router-configs", response_model=RouterConfigOut)
def save_router_config(payload: RouterConfigRequest) -> RouterConfigOut:
    saved = get_router_config_service().save_config(payload.to_config())
    return RouterConfigOut.from_config(saved)


@router.delete("/router-configs/{config_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_router_config(config_id: int) -> Response:
    try:
        get_router_config_service().delete_config(config_id)
    except ServiceError as exc:
        raise exc.to_http_exception() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/router/status", response_model=RouterStatusResponse)
def router_status() -> RouterStatusResponse:
    service = get_router_config_service()
    active = service.get_active_config()
    if active is None:
        return RouterStatusResponse(configured=False, connected=False, message="No active router configuration")
    try:
        connected = service.check_connection()
    except RouterNotConfiguredError as exc:
        return RouterStatusResponse(configured=False, connected=False, message=exc.message)
    return RouterStatusResponse(
        configured=True,
        connected=connected,
        router=RouterConfigOut.from_config(active),
        message=None if connected else "Router did not respond",
    )


@router.get("/router/accounts", response_model=RouterAccountsResponse)
def list_router_accounts(account_type: str = Query(default="pppoe", alias="type")) -> RouterAccountsResponse:
    lowered = account_type.strip().lower()
    if lowered not in _ACCOUNT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_request", "message": f"Unknown account type: {account_type}"},
        )
    try:
        client = get_router_client_provider().get_client()
        if lowered == "active":
            sessions = client.list_active_sessions(ServiceType.PPPOE) + client.list_active_sessions(
                ServiceType.HOTSPOT
            )
            return RouterAccountsResponse(type=lowered, sessions=sessions, count=len(sessions))
        accounts = client.list_accounts(ServiceType(lowered))
    except ServiceError as exc:
        logger.warning("Router account listing failed", extra={"account_type": lowered, "error_code": exc.code})
        raise exc.to_http_exception() from exc
    return RouterAccountsResponse(type=lowered, accounts=accounts, count=len(accounts))
