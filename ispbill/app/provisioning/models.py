"""Domain models for the network access router integration."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServiceType(str, Enum):
    """Kinds of network accounts a router can hold."""

    PPPOE = "pppoe"
    HOTSPOT = "hotspot"


class ProvisioningOutcome(str, Enum):
    """Successful results of an idempotent account provisioning call."""

    CREATED = "created"
    UPDATED = "updated"
    ALREADY_EXISTS = "already_exists"


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"true", "yes", "1"}


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class RouterConfig(BaseModel):
    """Connection settings for a router exposing the REST API."""

    config_id: Optional[int] = None
    name: str = Field(min_length=1)
    host: str = Field(min_length=1)
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    username: str = Field(min_length=1)
    password: str = Field(repr=False)
    use_ssl: bool = True
    is_active: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("host")
    @classmethod
    def _strip_host(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_ssl else "http"
        port = self.port or (443 if self.use_ssl else 80)
        return f"{scheme}://{self.host}:{port}"


class AccountRequest(BaseModel):
    """Desired state for a router account."""

    name: str = Field(min_length=1)
    secret: str = Field(min_length=1, repr=False)
    profile: str = "default"
    comment: Optional[str] = None
    disabled: bool = False

    model_config = ConfigDict(frozen=True)

    def to_api(self, service_type: ServiceType) -> Dict[str, str]:
        payload = {
            "name": self.name,
            "password": self.secret,
            "profile": self.profile,
            "disabled": "true" if self.disabled else "false",
        }
        if service_type == ServiceType.PPPOE:
            payload["service"] = "pppoe"
        if self.comment:
            payload["comment"] = self.comment
        return payload


class RouterAccount(BaseModel):
    """Account record as reported by the router."""

    account_id: str
    name: str
    service_type: ServiceType
    profile: Optional[str] = None
    service: Optional[str] = None
    comment: Optional[str] = None
    disabled: bool = False
    uptime: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_api(cls, service_type: ServiceType, data: Mapping[str, Any]) -> "RouterAccount":
        return cls(
            account_id=str(data.get(".id", "")),
            name=str(data.get("name", "")),
            service_type=service_type,
            profile=data.get("profile"),
            service=data.get("service"),
            comment=data.get("comment"),
            disabled=_as_bool(data.get("disabled")),
            uptime=data.get("uptime"),
        )


class ActiveSession(BaseModel):
    """A connected PPPoE or hotspot session."""

    session_id: str
    user: str
    service_type: ServiceType
    address: Optional[str] = None
    mac_address: Optional[str] = None
    uptime: Optional[str] = None
    bytes_in: int = 0
    bytes_out: int = 0

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_api(cls, service_type: ServiceType, data: Mapping[str, Any]) -> "ActiveSession":
        # PPPoE sessions report "name" and "caller-id"; hotspot sessions use "user" and "mac-address".
        return cls(
            session_id=str(data.get(".id", "")),
            user=str(data.get("user") or data.get("name") or ""),
            service_type=service_type,
            address=data.get("address"),
            mac_address=data.get("mac-address") or data.get("caller-id"),
            uptime=data.get("uptime"),
            bytes_in=_as_int(data.get("bytes-in")),
            bytes_out=_as_int(data.get("bytes-out")),
        )


class RouterProfile(BaseModel):
    """Service profile (speed and sharing limits) defined on the router."""

    profile_id: str
    name: str
    service_type: ServiceType
    rate_limit: Optional[str] = None
    shared_users: Optional[str] = None
    only_one: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_api(cls, service_type: ServiceType, data: Mapping[str, Any]) -> "RouterProfile":
        return cls(
            profile_id=str(data.get(".id", "")),
            name=str(data.get("name", "")),
            service_type=service_type,
            rate_limit=data.get("rate-limit"),
            shared_users=data.get("shared-users"),
            only_one=data.get("only-one"),
        )


class ProvisioningResult(BaseModel):
    """Outcome of ensuring an account exists for one service type."""

    service_type: ServiceType
    outcome: ProvisioningOutcome
    account: Optional[RouterAccount] = None

    model_config = ConfigDict(frozen=True)


class AccountSyncReport(BaseModel):
    """Summary of a bulk account synchronization."""

    success: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)


__all__ = [
    "AccountRequest",
    "AccountSyncReport",
    "ActiveSession",
    "ProvisioningOutcome",
    "ProvisioningResult",
    "RouterAccount",
    "RouterConfig",
    "RouterProfile",
    "ServiceType",
]
