"""Errors raised by payment gateway clients."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import status

from ..errors import ConnectivityError, ServiceError


@dataclass(eq=False)
class PaymentGatewayError(ServiceError):
    code: str = "payment_gateway_error"
    status_code: int = status.HTTP_502_BAD_GATEWAY


@dataclass(eq=False)
class GatewayConnectionError(PaymentGatewayError, ConnectivityError):
    code: str = "payment_gateway_unavailable"
    status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE


@dataclass(eq=False)
class GatewayAuthenticationError(PaymentGatewayError):
    """The gateway rejected our API key; a server-side misconfiguration."""

    code: str = "payment_gateway_auth_failed"
    status_code: int = status.HTTP_502_BAD_GATEWAY


@dataclass(eq=False)
class GatewayRequestError(PaymentGatewayError):
    code: str = "payment_gateway_rejected"
    status_code: int = status.HTTP_502_BAD_GATEWAY


__all__ = [
    "GatewayAuthenticationError",
    "GatewayConnectionError",
    "GatewayRequestError",
    "PaymentGatewayError",
]
