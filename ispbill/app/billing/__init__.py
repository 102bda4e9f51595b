"""Billing domain package: checkouts, payment reconciliation, and provisioning retries."""

from .credentials import AccountCredentials, generate_credentials
from .models import (
    AccountStatus,
    CheckoutMethod,
    CheckoutResult,
    Package,
    PackageType,
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
    User,
)
from .reconciliation import ProvisioningClientSource, ReconciliationService
from .service import BillingRepository, SubscriptionService

__all__ = [
    "AccountCredentials",
    "AccountStatus",
    "BillingRepository",
    "CheckoutMethod",
    "CheckoutResult",
    "Package",
    "PackageType",
    "ProvisioningClientSource",
    "ProvisioningJob",
    "ProvisioningJobStatus",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "ReconciliationService",
    "RetrySweepSummary",
    "Subscription",
    "SubscriptionService",
    "SubscriptionStatus",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "User",
    "generate_credentials",
]
