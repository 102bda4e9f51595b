"""Payment gateway package: invoice clients and callback models."""

from .exceptions import (
    GatewayAuthenticationError,
    GatewayConnectionError,
    GatewayRequestError,
    PaymentGatewayError,
)
from .gateway import (
    PaymentGateway,
    SandboxPaymentGateway,
    XenditGateway,
    create_payment_gateway,
    generate_external_id,
)
from .models import CustomerDetails, GatewayBalance, Invoice, InvoiceRequest, PaymentNotification

__all__ = [
    "CustomerDetails",
    "GatewayAuthenticationError",
    "GatewayBalance",
    "GatewayConnectionError",
    "GatewayRequestError",
    "Invoice",
    "InvoiceRequest",
    "PaymentGateway",
    "PaymentGatewayError",
    "PaymentNotification",
    "SandboxPaymentGateway",
    "XenditGateway",
    "create_payment_gateway",
    "generate_external_id",
]
