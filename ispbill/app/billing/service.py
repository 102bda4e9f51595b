"""Checkout flows: subscription purchases, balance top-ups, and cleanup."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Protocol, Sequence
from uuid import uuid4

from ..errors import InputValidationError, NotFoundError
from ..payments import CustomerDetails, Invoice, InvoiceRequest, PaymentGateway, generate_external_id
from .credentials import generate_credentials
from .models import (
    CheckoutMethod,
    CheckoutResult,
    Package,
    ProvisioningJob,
    Subscription,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)

logger = logging.getLogger(__name__)


class BillingRepository(Protocol):
    """Persistence operations required by the billing services."""

    def get_user(self, user_id: str) -> Optional[User]:
        ...

    def get_package(self, package_id: str) -> Optional[Package]:
        ...

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        ...

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        ...

    def get_transaction_by_reference(self, external_reference: str) -> Optional[Transaction]:
        ...

    def get_transaction_by_external_id(self, external_id: str) -> Optional[Transaction]:
        ...

    def get_paid_transaction(self, subscription_id: str) -> Optional[Transaction]:
        ...

    def create_subscription(self, subscription: Subscription) -> Subscription:
        ...

    def create_transaction(self, transaction: Transaction) -> Transaction:
        ...

    def attach_invoice(
        self,
        transaction_id: str,
        *,
        external_reference: str,
        metadata: Mapping[str, Any],
    ) -> Optional[Transaction]:
        ...

    def delete_checkout(self, *, subscription_id: Optional[str], transaction_id: str) -> None:
        ...

    def settle_transaction(
        self,
        transaction_id: str,
        *,
        status: TransactionStatus,
        payment_method: Optional[str],
        payment_channel: Optional[str],
        metadata: Mapping[str, Any],
    ) -> Optional[Transaction]:
        ...

    def activate_subscription(self, subscription_id: str, *, renewed_at: datetime) -> Optional[Subscription]:
        ...

    def set_user_router_account(self, user_id: str, account_name: str) -> Optional[User]:
        ...

    def credit_user_balance(self, user_id: str, amount: int) -> Optional[User]:
        ...

    def save_provisioning_job(self, job: ProvisioningJob) -> ProvisioningJob:
        ...

    def get_provisioning_job(self, subscription_id: str) -> Optional[ProvisioningJob]:
        ...

    def list_due_provisioning_jobs(self, now: datetime, limit: int = 50) -> Sequence[ProvisioningJob]:
        ...

    def list_unqueued_paid_subscriptions(self, settled_before: datetime, limit: int = 50) -> Sequence[Subscription]:
        ...

    def delete_stale_checkouts(self, cutoff: datetime) -> int:
        ...


def parse_checkout_method(value: Optional[str]) -> CheckoutMethod:
    if value is None or not str(value).strip():
        return CheckoutMethod.XENDIT
    try:
        return CheckoutMethod(str(value).strip().upper())
    except ValueError as exc:
        raise InputValidationError(
            message=f"Unsupported payment method: {value}",
            detail={"field": "paymentMethod"},
        ) from exc


@dataclass
class SubscriptionService:
    """Creates pending subscriptions and top-ups and requests their invoices.

    Records are persisted before the gateway is called; if invoicing fails the
    freshly created rows are deleted again so no checkout is left dangling
    without an external reference.
    """

    repository: BillingRepository
    gateway: PaymentGateway
    currency: str = "IDR"
    invoice_duration_seconds: int = 24 * 60 * 60
    app_base_url: str = "http://localhost:3000"
    pending_checkout_ttl_minutes: int = 24 * 60

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def create_subscription(
        self,
        *,
        user_id: str,
        package_id: str,
        payment_method: Optional[str] = None,
    ) -> CheckoutResult:
        if not user_id or not package_id:
            raise InputValidationError(message="User ID and Package ID are required")
        method = parse_checkout_method(payment_method)

        user = self.repository.get_user(user_id)
        if user is None:
            raise NotFoundError(message="User not found", detail={"user_id": user_id})
        package = self.repository.get_package(package_id)
        if package is None:
            raise NotFoundError(message="Package not found", detail={"package_id": package_id})
        if not package.is_active:
            raise InputValidationError(message="Package is not available", detail={"package_id": package_id})
        if method == CheckoutMethod.XENDIT and package.price < 1:
            raise InputValidationError(message="Package price must be positive to invoice")

        start_date = self._now()
        end_date = start_date + timedelta(days=package.duration_days)
        credentials = generate_credentials(user.name, start_date)
        description = f"Subscription: {package.name} - {package.duration_days} days"

        subscription = self.repository.create_subscription(
            Subscription(
                subscription_id=f"sub_{uuid4().hex}",
                user_id=user.user_id,
                package_id=package.package_id,
                status=SubscriptionStatus.PENDING,
                start_date=start_date,
                end_date=end_date,
                account_name=credentials.account_name,
                account_secret=credentials.account_secret,
                created_at=start_date,
                updated_at=start_date,
            )
        )
        transaction = Transaction(
            transaction_id=f"txn_{uuid4().hex}",
            user_id=user.user_id,
            subscription_id=subscription.subscription_id,
            transaction_type=TransactionType.SUBSCRIPTION,
            amount=package.price,
            status=TransactionStatus.PENDING,
            checkout_method=method,
            external_id=generate_external_id("SUB") if method == CheckoutMethod.XENDIT else None,
            description=description,
            created_at=start_date,
            updated_at=start_date,
        )
        try:
            transaction = self.repository.create_transaction(transaction)
        except Exception:
            self._discard_checkout(subscription.subscription_id, transaction.transaction_id)
            raise

        logger.info(
            "Subscription checkout created",
            extra={
                "subscription_id": subscription.subscription_id,
                "transaction_id": transaction.transaction_id,
                "package_id": package.package_id,
                "amount": transaction.amount,
                "checkout_method": method.value,
            },
        )
        if method != CheckoutMethod.XENDIT:
            return CheckoutResult(subscription=subscription, transaction=transaction)

        return self._invoice_checkout(user, transaction, subscription=subscription)

    def create_topup(self, *, user_id: str, amount: int) -> CheckoutResult:
        if not user_id:
            raise InputValidationError(message="User ID is required")
        if amount is None or int(amount) < 1:
            raise InputValidationError(message="Top-up amount must be positive", detail={"field": "amount"})

        user = self.repository.get_user(user_id)
        if user is None:
            raise NotFoundError(message="User not found", detail={"user_id": user_id})

        now = self._now()
        transaction = self.repository.create_transaction(
            Transaction(
                transaction_id=f"txn_{uuid4().hex}",
                user_id=user.user_id,
                transaction_type=TransactionType.TOPUP,
                amount=int(amount),
                status=TransactionStatus.PENDING,
                checkout_method=CheckoutMethod.XENDIT,
                external_id=generate_external_id("TOPUP"),
                description="Topup Saldo",
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(
            "Top-up checkout created",
            extra={"transaction_id": transaction.transaction_id, "amount": transaction.amount},
        )
        return self._invoice_checkout(user, transaction, subscription=None)

    def purge_stale_checkouts(self, now: Optional[datetime] = None) -> int:
        """Delete gateway checkouts left PENDING without an invoice reference."""

        cutoff = (now or self._now()) - timedelta(minutes=self.pending_checkout_ttl_minutes)
        removed = self.repository.delete_stale_checkouts(cutoff)
        if removed:
            logger.info("Purged stale checkouts", extra={"removed": removed, "cutoff": cutoff.isoformat()})
        return removed

    def _invoice_checkout(
        self,
        user: User,
        transaction: Transaction,
        *,
        subscription: Optional[Subscription],
    ) -> CheckoutResult:
        subscription_id = subscription.subscription_id if subscription else None
        try:
            invoice = self.gateway.create_invoice(self._build_invoice_request(user, transaction))
            attached = self.repository.attach_invoice(
                transaction.transaction_id,
                external_reference=invoice.invoice_id,
                metadata=_invoice_metadata(invoice),
            )
            if attached is None:
                raise RuntimeError("Transaction already carries an external reference")
        except Exception:
            logger.exception(
                "Invoice creation failed; removing pending checkout",
                extra={"transaction_id": transaction.transaction_id, "subscription_id": subscription_id},
            )
            self._discard_checkout(subscription_id, transaction.transaction_id)
            raise

        return CheckoutResult(
            subscription=subscription,
            transaction=attached,
            invoice_url=invoice.invoice_url,
            expiry_date=invoice.expiry_date,
        )

    def _build_invoice_request(self, user: User, transaction: Transaction) -> InvoiceRequest:
        return_url = f"{self.app_base_url}/payment/return"
        external_id = transaction.external_id or transaction.transaction_id
        return InvoiceRequest(
            external_id=external_id,
            amount=transaction.amount,
            description=transaction.description or "Payment",
            customer=CustomerDetails(given_names=user.name, email=user.email, mobile_number=user.phone),
            success_redirect_url=f"{return_url}?status=success&external_id={external_id}",
            failure_redirect_url=f"{return_url}?status=failed&external_id={external_id}",
            currency=self.currency,
            invoice_duration=self.invoice_duration_seconds,
        )

    def _discard_checkout(self, subscription_id: Optional[str], transaction_id: str) -> None:
        try:
            self.repository.delete_checkout(subscription_id=subscription_id, transaction_id=transaction_id)
        except Exception:
            # The stale checkout sweep removes whatever is left behind.
            logger.exception(
                "Compensating cleanup failed",
                extra={"transaction_id": transaction_id, "subscription_id": subscription_id},
            )


def _invoice_metadata(invoice: Invoice) -> dict:
    return {
        "invoice_url": invoice.invoice_url,
        "expiry_date": invoice.expiry_date.isoformat() if invoice.expiry_date else None,
        "invoice_status": invoice.status,
    }


__all__ = ["BillingRepository", "SubscriptionService", "parse_checkout_method"]
