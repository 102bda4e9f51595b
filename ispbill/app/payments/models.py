"""Domain models for the payment gateway integration."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_PAID_STATUSES = {"PAID", "SETTLED"}


def _parse_optional_datetime(value: object) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError("Unsupported datetime value")


class CustomerDetails(BaseModel):
    """Payer details attached to an invoice."""

    given_names: str
    email: Optional[str] = None
    mobile_number: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class InvoiceRequest(BaseModel):
    """Parameters for creating a hosted payment invoice.

    ``amount`` is in whole currency units and is fixed when the request is
    built; it is never recomputed on retry.
    """

    external_id: str = Field(min_length=1)
    amount: int = Field(ge=1)
    description: str
    customer: CustomerDetails
    success_redirect_url: Optional[str] = None
    failure_redirect_url: Optional[str] = None
    currency: str = "IDR"
    invoice_duration: Optional[int] = Field(default=None, ge=1)
    should_send_email: bool = True

    model_config = ConfigDict(frozen=True)

    def to_api(self) -> Dict[str, Any]:
        customer: Dict[str, Any] = {"given_names": self.customer.given_names}
        if self.customer.email:
            customer["email"] = self.customer.email
        if self.customer.mobile_number:
            customer["mobile_number"] = self.customer.mobile_number

        payload: Dict[str, Any] = {
            "external_id": self.external_id,
            "amount": self.amount,
            "description": self.description,
            "customer": customer,
            "currency": self.currency,
            "should_send_email": self.should_send_email,
        }
        if self.customer.email:
            payload["payer_email"] = self.customer.email
        if self.success_redirect_url:
            payload["success_redirect_url"] = self.success_redirect_url
        if self.failure_redirect_url:
            payload["failure_redirect_url"] = self.failure_redirect_url
        if self.invoice_duration:
            payload["invoice_duration"] = self.invoice_duration
        return payload


class Invoice(BaseModel):
    """Invoice as reported by the payment gateway."""

    invoice_id: str
    external_id: str
    status: str
    amount: int
    invoice_url: str
    expiry_date: Optional[datetime] = None
    paid_amount: Optional[int] = None
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "Invoice":
        paid_amount = data.get("paid_amount")
        return cls(
            invoice_id=str(data["id"]),
            external_id=str(data.get("external_id", "")),
            status=str(data.get("status", "PENDING")).upper(),
            amount=int(Decimal(str(data.get("amount", 0)))),
            invoice_url=str(data.get("invoice_url", "")),
            expiry_date=_parse_optional_datetime(data.get("expiry_date")),
            paid_amount=int(Decimal(str(paid_amount))) if paid_amount is not None else None,
            payment_method=data.get("payment_method"),
            payment_channel=data.get("payment_channel"),
        )


class GatewayBalance(BaseModel):
    balance: int = 0

    model_config = ConfigDict(frozen=True)


class PaymentNotification(BaseModel):
    """Inbound invoice callback from the payment gateway.

    ``invoice_id`` is the gateway's own identifier and the primary key used
    to find the local transaction; ``external_id`` echoes the id this system
    chose and is the fallback when ``id`` is absent or unknown.
    """

    invoice_id: Optional[str] = Field(default=None, alias="id")
    external_id: Optional[str] = None
    status: str = Field(min_length=1)
    paid_amount: Optional[Decimal] = None
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    @field_validator("status")
    @classmethod
    def _normalize_status(cls, value: str) -> str:
        return value.strip().upper()

    @model_validator(mode="after")
    def _require_reference(self) -> "PaymentNotification":
        if not self.invoice_id and not self.external_id:
            raise ValueError("Notification carries neither id nor external_id")
        return self

    @property
    def is_paid(self) -> bool:
        return self.status in _PAID_STATUSES

    @property
    def paid_amount_units(self) -> Optional[int]:
        return int(self.paid_amount) if self.paid_amount is not None else None


__all__ = [
    "CustomerDetails",
    "GatewayBalance",
    "Invoice",
    "InvoiceRequest",
    "PaymentNotification",
]
