"""Payment gateway clients used to invoice customers and verify callbacks."""
from __future__ import annotations

import hmac
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence
from uuid import uuid4

import httpx

from ..config import BillingConfig
from .exceptions import (
    GatewayAuthenticationError,
    GatewayConnectionError,
    GatewayRequestError,
)
from .models import GatewayBalance, Invoice, InvoiceRequest

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    """External payment processor integration."""

    name: str

    def create_invoice(self, request: InvoiceRequest) -> Invoice:
        """Create a hosted invoice the payer is redirected to."""

    def get_invoice(self, invoice_id: str) -> Invoice:
        ...

    def get_balance(self) -> GatewayBalance:
        ...

    def verify_callback_token(self, token: Optional[str]) -> bool:
        """Return ``True`` when an inbound callback carries the shared secret."""


def generate_external_id(prefix: str = "INV") -> str:
    """Build the system-chosen invoice id, e.g. ``SUB-1700000000000-a1b2c3``."""

    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def _tokens_match(expected: Optional[str], supplied: Optional[str]) -> bool:
    if not expected or not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


class XenditGateway:
    """Client for the Xendit invoice API using API-key basic auth."""

    name = "xendit"

    def __init__(
        self,
        *,
        api_key: str,
        callback_token: Optional[str],
        base_url: str = "https://api.xendit.co",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._callback_token = callback_token
        self._client = httpx.Client(
            base_url=base_url,
            auth=(api_key, ""),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        try:
            response = self._client.request(method, path, params=params, json=payload)
        except httpx.TimeoutException as exc:
            raise GatewayConnectionError(message="Timed out contacting the payment gateway") from exc
        except httpx.TransportError as exc:
            raise GatewayConnectionError(message=f"Unable to reach the payment gateway: {exc}") from exc

        if response.status_code in (401, 403):
            raise GatewayAuthenticationError(message="Payment gateway rejected the API key")
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, Mapping):
                body = {}
            error_code = body.get("error_code", "UNKNOWN")
            message = body.get("message") or response.reason_phrase
            raise GatewayRequestError(
                message=f"Payment gateway error ({error_code}): {message}",
                detail={"gateway_status": response.status_code, "gateway_error": error_code},
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayRequestError(message="Payment gateway returned a malformed response") from exc

    def create_invoice(self, request: InvoiceRequest) -> Invoice:
        data = self._request("POST", "/v2/invoices", payload=request.to_api())
        return Invoice.from_api(data)

    def get_invoice(self, invoice_id: str) -> Invoice:
        return Invoice.from_api(self._request("GET", f"/v2/invoices/{invoice_id}"))

    def list_invoices(
        self,
        *,
        external_id: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Invoice]:
        params: Dict[str, Any] = {}
        if external_id:
            params["external_id"] = external_id
        if statuses:
            params["statuses"] = list(statuses)
        if limit:
            params["limit"] = limit
        rows = self._request("GET", "/v2/invoices", params=params) or []
        return [Invoice.from_api(row) for row in rows]

    def get_balance(self) -> GatewayBalance:
        data = self._request("GET", "/balance") or {}
        return GatewayBalance(balance=int(data.get("balance", 0)))

    def verify_callback_token(self, token: Optional[str]) -> bool:
        return _tokens_match(self._callback_token, token)


class SandboxPaymentGateway:
    """Local development gateway that issues invoices without network calls."""

    name = "sandbox"

    def __init__(self, *, callback_token: Optional[str], base_url: str = "https://billing.local") -> None:
        self._callback_token = callback_token
        self._base_url = base_url.rstrip("/")
        self._invoices: Dict[str, Invoice] = {}

    def create_invoice(self, request: InvoiceRequest) -> Invoice:
        invoice_id = f"inv_{uuid4().hex}"
        duration = request.invoice_duration or 24 * 60 * 60
        invoice = Invoice(
            invoice_id=invoice_id,
            external_id=request.external_id,
            status="PENDING",
            amount=request.amount,
            invoice_url=f"{self._base_url}/invoices/{invoice_id}",
            expiry_date=datetime.now(timezone.utc) + timedelta(seconds=duration),
        )
        self._invoices[invoice_id] = invoice
        logger.info(
            "Sandbox invoice created",
            extra={"invoice_id": invoice_id, "external_id": request.external_id, "amount": request.amount},
        )
        return invoice

    def get_invoice(self, invoice_id: str) -> Invoice:
        try:
            return self._invoices[invoice_id]
        except KeyError as exc:
            raise GatewayRequestError(message="Invoice not found", detail={"gateway_status": 404}) from exc

    def get_balance(self) -> GatewayBalance:
        return GatewayBalance(balance=0)

    def verify_callback_token(self, token: Optional[str]) -> bool:
        return _tokens_match(self._callback_token, token)


def create_payment_gateway(config: BillingConfig) -> PaymentGateway:
    if config.gateway_name == "xendit":
        return XenditGateway(
            api_key=config.xendit_api_key or "",
            callback_token=config.xendit_callback_token,
            base_url=config.xendit_base_url,
            timeout=config.gateway_timeout_seconds,
        )
    return SandboxPaymentGateway(callback_token=config.xendit_callback_token)


__all__ = [
    "PaymentGateway",
    "SandboxPaymentGateway",
    "XenditGateway",
    "create_payment_gateway",
    "generate_external_id",
]
