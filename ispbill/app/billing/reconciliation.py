"""Applies payment gateway notifications to billing state and the router."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, List, Mapping, Optional, Protocol, Tuple

from pydantic import ValidationError

from ..errors import AuthenticationFailure, ConflictError, InputValidationError, NotFoundError, ProvisioningFailure
from ..payments import PaymentGateway, PaymentNotification
from ..provisioning import AccountRequest, NetworkProvisioningClient, ProvisioningResult
from .models import (
    ProvisioningJob,
    ProvisioningJobStatus,
    ReconciliationOutcome,
    ReconciliationResult,
    RetrySweepSummary,
    Subscription,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from .service import BillingRepository

logger = logging.getLogger(__name__)


class ProvisioningClientSource(Protocol):
    """Resolves the provisioning client for the currently active router."""

    def get_client(self) -> NetworkProvisioningClient:
        ...


@dataclass
class ReconciliationService:
    """Matches gateway notifications to transactions and provisions access.

    Only one delivery of a notification can move a transaction out of
    PENDING; that delivery alone goes on to provision. Router failures never
    undo a recorded payment: the subscription stays PENDING and a
    :class:`ProvisioningJob` is queued for :meth:`retry_pending_provisioning`.
    """

    repository: BillingRepository
    gateway: PaymentGateway
    clients: ProvisioningClientSource
    default_profile: str = "default"
    max_attempts: int = 5
    retry_backoff_seconds: float = 60.0

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def handle_notification(self, token: Optional[str], payload: Any) -> ReconciliationResult:
        if not self.gateway.verify_callback_token(token):
            logger.warning("Rejected payment notification with invalid callback token")
            raise AuthenticationFailure(message="Invalid callback token")

        notification = self._parse_notification(payload)
        transaction = self._locate_transaction(notification)
        if transaction is None:
            logger.error(
                "Payment notification for unknown invoice; manual reconciliation required",
                extra={"invoice_id": notification.invoice_id, "external_id": notification.external_id},
            )
            raise NotFoundError(
                message="Transaction not found",
                detail={"invoice_id": notification.invoice_id, "external_id": notification.external_id},
            )

        if transaction.status.is_terminal:
            return self._already_processed(transaction, notification)

        target_status = TransactionStatus.SUCCESS if notification.is_paid else TransactionStatus.FAILED
        paid_amount = notification.paid_amount_units
        if notification.is_paid and paid_amount is not None and paid_amount != transaction.amount:
            logger.warning(
                "Paid amount differs from invoiced amount",
                extra={
                    "transaction_id": transaction.transaction_id,
                    "amount": transaction.amount,
                    "paid_amount": paid_amount,
                },
            )

        settled = self.repository.settle_transaction(
            transaction.transaction_id,
            status=target_status,
            payment_method=notification.payment_method,
            payment_channel=notification.payment_channel,
            metadata={"notification": dict(payload), "received_at": self._now().isoformat()},
        )
        if settled is None:
            # Another delivery settled the row between our read and update.
            current = self.repository.get_transaction(transaction.transaction_id) or transaction
            return self._already_processed(current, notification)

        logger.info(
            "Transaction settled",
            extra={
                "transaction_id": settled.transaction_id,
                "status": settled.status.value,
                "gateway_status": notification.status,
            },
        )
        if settled.status == TransactionStatus.FAILED:
            return ReconciliationResult(transaction=settled, outcome=ReconciliationOutcome.PAYMENT_FAILED)

        if settled.transaction_type == TransactionType.TOPUP:
            self.repository.credit_user_balance(settled.user_id, settled.amount)
            logger.info(
                "User balance credited",
                extra={"transaction_id": settled.transaction_id, "user_id": settled.user_id, "amount": settled.amount},
            )
            return ReconciliationResult(transaction=settled, outcome=ReconciliationOutcome.BALANCE_CREDITED)

        subscription = (
            self.repository.get_subscription(settled.subscription_id) if settled.subscription_id else None
        )
        if subscription is None:
            if settled.subscription_id:
                logger.error(
                    "Paid transaction references a missing subscription",
                    extra={"transaction_id": settled.transaction_id, "subscription_id": settled.subscription_id},
                )
            return ReconciliationResult(transaction=settled, outcome=ReconciliationOutcome.RECORDED)

        try:
            activated, results = self._provision(subscription)
        except Exception as exc:
            try:
                self._schedule_retry(subscription.subscription_id, settled.transaction_id, exc)
            except Exception:
                # The payment is already recorded; the sweep finds paid subscriptions without a job.
                logger.exception(
                    "Could not queue provisioning retry",
                    extra={"subscription_id": subscription.subscription_id, "transaction_id": settled.transaction_id},
                )
            return ReconciliationResult(
                transaction=settled,
                outcome=ReconciliationOutcome.PROVISIONING_FAILED,
                subscription=subscription,
                error=str(exc),
            )

        return ReconciliationResult(
            transaction=settled,
            outcome=ReconciliationOutcome.PROVISIONED,
            subscription=activated,
            provisioning=results,
        )

    def retry_pending_provisioning(self, now: Optional[datetime] = None, limit: int = 50) -> RetrySweepSummary:
        """Replay due provisioning jobs with the subscription's stored credentials.

        Paid subscriptions that never got a job row (the process died after
        settling, or the job write failed) are picked up as well once they
        have been settled for longer than one backoff interval.
        """

        now = now or self._now()
        attempted = provisioned = rescheduled = abandoned = 0
        for job in self.repository.list_due_provisioning_jobs(now, limit):
            attempted += 1
            subscription = self.repository.get_subscription(job.subscription_id)
            if subscription is None:
                self.repository.save_provisioning_job(
                    job.model_copy(
                        update={
                            "status": ProvisioningJobStatus.ABANDONED,
                            "last_error": "Subscription no longer exists",
                            "updated_at": now,
                        }
                    )
                )
                abandoned += 1
                continue
            if subscription.status == SubscriptionStatus.ACTIVE:
                self._complete_job(job, now)
                provisioned += 1
                continue

            try:
                self._provision(subscription)
            except Exception as exc:
                updated = self._schedule_retry(subscription.subscription_id, job.transaction_id, exc, previous=job)
                if updated.status == ProvisioningJobStatus.ABANDONED:
                    abandoned += 1
                else:
                    rescheduled += 1
                continue
            provisioned += 1

        remaining = limit - attempted
        settled_before = now - timedelta(seconds=self.retry_backoff_seconds)
        orphaned = self.repository.list_unqueued_paid_subscriptions(settled_before, remaining) if remaining > 0 else []
        for subscription in orphaned:
            attempted += 1
            paid = self.repository.get_paid_transaction(subscription.subscription_id)
            logger.warning(
                "Paid subscription has no provisioning job; provisioning now",
                extra={
                    "subscription_id": subscription.subscription_id,
                    "transaction_id": paid.transaction_id if paid else None,
                },
            )
            try:
                self._provision(subscription)
            except Exception as exc:
                updated = self._schedule_retry(
                    subscription.subscription_id, paid.transaction_id if paid else None, exc
                )
                if updated.status == ProvisioningJobStatus.ABANDONED:
                    abandoned += 1
                else:
                    rescheduled += 1
                continue
            provisioned += 1

        if attempted:
            logger.info(
                "Provisioning retry sweep finished",
                extra={
                    "attempted": attempted,
                    "provisioned": provisioned,
                    "rescheduled": rescheduled,
                    "abandoned": abandoned,
                },
            )
        return RetrySweepSummary(
            attempted=attempted,
            provisioned=provisioned,
            rescheduled=rescheduled,
            abandoned=abandoned,
        )

    def reprovision_subscription(self, subscription_id: str) -> ReconciliationResult:
        """Admin recovery path for a subscription that is paid but not connected.

        Router errors propagate to the caller.
        """

        subscription = self.repository.get_subscription(subscription_id)
        if subscription is None:
            raise NotFoundError(message="Subscription not found", detail={"subscription_id": subscription_id})

        paid = self.repository.get_paid_transaction(subscription_id)
        if paid is None and subscription.status != SubscriptionStatus.ACTIVE:
            raise ConflictError(
                message="Subscription has no settled payment",
                detail={"subscription_id": subscription_id},
            )

        activated, results = self._provision(subscription)
        return ReconciliationResult(
            transaction=paid,
            outcome=ReconciliationOutcome.PROVISIONED,
            subscription=activated,
            provisioning=results,
        )

    def _parse_notification(self, payload: Any) -> PaymentNotification:
        if not isinstance(payload, Mapping):
            raise InputValidationError(message="Notification body must be a JSON object")
        try:
            return PaymentNotification.model_validate(payload)
        except ValidationError as exc:
            raise InputValidationError(
                message="Malformed payment notification",
                detail={"errors": [error["msg"] for error in exc.errors()]},
            ) from exc

    def _locate_transaction(self, notification: PaymentNotification) -> Optional[Transaction]:
        transaction = None
        if notification.invoice_id:
            transaction = self.repository.get_transaction_by_reference(notification.invoice_id)
        if transaction is None and notification.external_id:
            transaction = self.repository.get_transaction_by_reference(
                notification.external_id
            ) or self.repository.get_transaction_by_external_id(notification.external_id)
        return transaction

    def _already_processed(self, transaction: Transaction, notification: PaymentNotification) -> ReconciliationResult:
        expected = TransactionStatus.SUCCESS if notification.is_paid else TransactionStatus.FAILED
        if transaction.status != expected:
            logger.warning(
                "Ignoring notification that contradicts settled transaction",
                extra={
                    "transaction_id": transaction.transaction_id,
                    "status": transaction.status.value,
                    "gateway_status": notification.status,
                },
            )
        return ReconciliationResult(transaction=transaction, outcome=ReconciliationOutcome.ALREADY_PROCESSED)

    def _provision(self, subscription: Subscription) -> Tuple[Subscription, List[ProvisioningResult]]:
        package = self.repository.get_package(subscription.package_id)
        if package is None:
            raise ProvisioningFailure(
                message="Package for subscription no longer exists",
                detail={"package_id": subscription.package_id},
            )
        user = self.repository.get_user(subscription.user_id)
        display_name = user.name if user else subscription.user_id

        request = AccountRequest(
            name=subscription.account_name,
            secret=subscription.account_secret,
            profile=package.router_profile or self.default_profile,
            comment=f"User: {display_name} | Package: {package.name}",
        )
        service_types = package.package_type.service_types
        try:
            client = self.clients.get_client()
            results = [client.ensure_account(service_type, request) for service_type in service_types]
        except Exception as exc:
            # The secret stays on the subscription row; never log it.
            logger.exception(
                "Router provisioning failed",
                extra={
                    "subscription_id": subscription.subscription_id,
                    "account_name": request.name,
                    "profile": request.profile,
                    "service_types": [service_type.value for service_type in service_types],
                    "error_code": getattr(exc, "code", type(exc).__name__),
                    "retryable": getattr(exc, "retryable", False),
                },
            )
            raise

        now = self._now()
        activated = self.repository.activate_subscription(subscription.subscription_id, renewed_at=now)
        if activated is None:
            activated = self.repository.get_subscription(subscription.subscription_id) or subscription
        self.repository.set_user_router_account(subscription.user_id, subscription.account_name)

        job = self.repository.get_provisioning_job(subscription.subscription_id)
        if job is not None and job.status == ProvisioningJobStatus.PENDING:
            self._complete_job(job, now)

        logger.info(
            "Subscription provisioned",
            extra={
                "subscription_id": subscription.subscription_id,
                "account_name": subscription.account_name,
                "service_types": [result.service_type.value for result in results],
                "outcomes": [result.outcome.value for result in results],
            },
        )
        return activated, results

    def _complete_job(self, job: ProvisioningJob, now: datetime) -> None:
        self.repository.save_provisioning_job(
            job.model_copy(update={"status": ProvisioningJobStatus.COMPLETED, "last_error": None, "updated_at": now})
        )

    def _schedule_retry(
        self,
        subscription_id: str,
        transaction_id: Optional[str],
        exc: Exception,
        *,
        previous: Optional[ProvisioningJob] = None,
    ) -> ProvisioningJob:
        now = self._now()
        if previous is None:
            previous = self.repository.get_provisioning_job(subscription_id)
        attempts = (previous.attempts if previous else 0) + 1

        if attempts >= self.max_attempts:
            status = ProvisioningJobStatus.ABANDONED
            next_attempt_at = now
            logger.error(
                "Provisioning retries exhausted; manual remediation required",
                extra={"subscription_id": subscription_id, "attempts": attempts, "error": str(exc)},
            )
        else:
            status = ProvisioningJobStatus.PENDING
            next_attempt_at = now + timedelta(seconds=self.retry_backoff_seconds * (2 ** (attempts - 1)))
            logger.warning(
                "Provisioning retry scheduled",
                extra={
                    "subscription_id": subscription_id,
                    "attempts": attempts,
                    "next_attempt_at": next_attempt_at.isoformat(),
                    "error": str(exc),
                },
            )

        job = ProvisioningJob(
            subscription_id=subscription_id,
            transaction_id=transaction_id,
            status=status,
            attempts=attempts,
            last_error=str(exc)[:500],
            next_attempt_at=next_attempt_at,
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )
        return self.repository.save_provisioning_job(job)


__all__ = ["ProvisioningClientSource", "ReconciliationService"]
