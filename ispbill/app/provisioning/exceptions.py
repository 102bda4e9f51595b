"""Errors raised while talking to the network access router."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import status

from ..errors import (
    AuthenticationFailure,
    ConnectivityError,
    ProvisioningFailure,
    ServiceError,
)


@dataclass(eq=False)
class RouterError(ServiceError):
    """Base class for every router-side failure."""

    code: str = "router_error"
    status_code: int = status.HTTP_502_BAD_GATEWAY


@dataclass(eq=False)
class RouterNotConfiguredError(RouterError):
    code: str = "router_not_configured"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass(eq=False)
class RouterConnectionError(RouterError, ConnectivityError):
    """The router was unreachable or did not answer in time."""

    code: str = "router_connection_failed"
    status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE


@dataclass(eq=False)
class RouterAuthenticationError(RouterError, AuthenticationFailure):
    """The router rejected the configured credentials."""

    code: str = "router_auth_failed"
    status_code: int = status.HTTP_401_UNAUTHORIZED


@dataclass(eq=False)
class RouterRequestError(RouterError, ProvisioningFailure):
    """The router refused or could not parse a request."""

    code: str = "router_request_rejected"
    status_code: int = status.HTTP_502_BAD_GATEWAY


__all__ = [
    "RouterAuthenticationError",
    "RouterConnectionError",
    "RouterError",
    "RouterNotConfiguredError",
    "RouterRequestError",
]
