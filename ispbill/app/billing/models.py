"""Domain models for customers, packages, subscriptions, and payments."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..provisioning.models import ProvisioningResult, ServiceType


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class PackageType(str, Enum):
    """Which router services a package provisions."""

    PPPOE = "PPPOE"
    HOTSPOT = "HOTSPOT"
    BOTH = "BOTH"

    @property
    def service_types(self) -> Tuple[ServiceType, ...]:
        if self == PackageType.PPPOE:
            return (ServiceType.PPPOE,)
        if self == PackageType.HOTSPOT:
            return (ServiceType.HOTSPOT,)
        return (ServiceType.PPPOE, ServiceType.HOTSPOT)


class SubscriptionStatus(str, Enum):
    """Lifecycle status for a subscription billing period."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


class TransactionStatus(str, Enum):
    """PENDING moves to exactly one terminal status."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self != TransactionStatus.PENDING


class TransactionType(str, Enum):
    SUBSCRIPTION = "SUBSCRIPTION"
    TOPUP = "TOPUP"


class CheckoutMethod(str, Enum):
    """How the customer is expected to pay at checkout."""

    XENDIT = "XENDIT"
    MANUAL = "MANUAL"


class ReconciliationOutcome(str, Enum):
    """Possible results of applying a payment notification."""

    PROVISIONED = "provisioned"
    PROVISIONING_FAILED = "provisioning_failed"
    PAYMENT_FAILED = "payment_failed"
    BALANCE_CREDITED = "balance_credited"
    RECORDED = "recorded"
    ALREADY_PROCESSED = "already_processed"


class ProvisioningJobStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    user_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    status: AccountStatus = AccountStatus.ACTIVE
    balance: int = 0
    router_account_name: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Package(BaseModel):
    """A sellable internet access plan."""

    package_id: str
    name: str
    price: int = Field(ge=0)
    duration_days: int = Field(ge=1)
    package_type: PackageType
    data_cap_mb: Optional[int] = Field(default=None, ge=0)
    speed_profile: Optional[str] = None
    router_profile: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Subscription(BaseModel):
    """Binds a user to a package for one billing period.

    ``account_name`` and ``account_secret`` are generated once at checkout and
    reused verbatim by every provisioning attempt.
    """

    subscription_id: str
    user_id: str
    package_id: str
    status: SubscriptionStatus = SubscriptionStatus.PENDING
    start_date: datetime
    end_date: datetime
    account_name: str
    account_secret: str = Field(repr=False)
    last_renewal_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Transaction(BaseModel):
    """One payment attempt.

    ``external_id`` is chosen by this system when invoicing; ``external_reference``
    is the gateway's invoice id and the idempotency key for reconciliation.
    """

    transaction_id: str
    user_id: str
    subscription_id: Optional[str] = None
    transaction_type: TransactionType = TransactionType.SUBSCRIPTION
    amount: int = Field(ge=0)
    status: TransactionStatus = TransactionStatus.PENDING
    checkout_method: CheckoutMethod = CheckoutMethod.XENDIT
    external_id: Optional[str] = None
    external_reference: Optional[str] = None
    payment_method: Optional[str] = None
    payment_channel: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ProvisioningJob(BaseModel):
    """Durable record of a provisioning attempt that still needs to succeed."""

    subscription_id: str
    transaction_id: Optional[str] = None
    status: ProvisioningJobStatus = ProvisioningJobStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    last_error: Optional[str] = None
    next_attempt_at: datetime = Field(default_factory=_utcnow)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CheckoutResult(BaseModel):
    """Return value of a checkout: the pending records plus where to pay."""

    subscription: Optional[Subscription] = None
    transaction: Transaction
    invoice_url: Optional[str] = None
    expiry_date: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class ReconciliationResult(BaseModel):
    transaction: Optional[Transaction] = None
    outcome: ReconciliationOutcome
    subscription: Optional[Subscription] = None
    provisioning: List[ProvisioningResult] = Field(default_factory=list)
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class RetrySweepSummary(BaseModel):
    attempted: int = 0
    provisioned: int = 0
    rescheduled: int = 0
    abandoned: int = 0

    model_config = ConfigDict(frozen=True)


__all__ = [
    "AccountStatus",
    "CheckoutMethod",
    "CheckoutResult",
    "Package",
    "PackageType",
    "ProvisioningJob",
    "ProvisioningJobStatus",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "RetrySweepSummary",
    "Subscription",
    "SubscriptionStatus",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "User",
]
