"""Error taxonomy shared by the billing, payment, and provisioning layers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass(eq=False)
class ServiceError(Exception):
    """Represents an actionable failure surfaced to API callers or operators."""

    message: str
    code: str = "service_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: Optional[Mapping[str, Any]] = None

    retryable = False

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass(eq=False)
class InputValidationError(ServiceError):
    """Caller input is missing or malformed; nothing external was touched."""

    code: str = "invalid_request"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass(eq=False)
class NotFoundError(ServiceError):
    code: str = "not_found"
    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass(eq=False)
class AuthenticationFailure(ServiceError):
    code: str = "authentication_failed"
    status_code: int = status.HTTP_401_UNAUTHORIZED


@dataclass(eq=False)
class ConnectivityError(ServiceError):
    """A remote system could not be reached or timed out."""

    code: str = "upstream_unavailable"
    status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE

    retryable = True


@dataclass(eq=False)
class ConflictError(ServiceError):
    code: str = "conflict"
    status_code: int = status.HTTP_409_CONFLICT


@dataclass(eq=False)
class ProvisioningFailure(ServiceError):
    """The network device rejected or could not complete a request."""

    code: str = "provisioning_failed"
    status_code: int = status.HTTP_502_BAD_GATEWAY


__all__ = [
    "AuthenticationFailure",
    "ConflictError",
    "ConnectivityError",
    "InputValidationError",
    "NotFoundError",
    "ProvisioningFailure",
    "ServiceError",
]
