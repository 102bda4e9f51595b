from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pytest

from ispbill.app.billing import (
    Package,
    PackageType,
    ProvisioningJob,
    ProvisioningJobStatus,
    ReconciliationService,
    Subscription,
    SubscriptionService,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
    User,
)
from ispbill.app.billing.models import CheckoutMethod
from ispbill.app.billing.service import BillingRepository
from ispbill.app.payments import GatewayBalance, Invoice, InvoiceRequest
from ispbill.app.provisioning import AccountRequest, ProvisioningOutcome, ProvisioningResult, ServiceType

CALLBACK_TOKEN = "callback-secret"


class InMemoryBillingRepository(BillingRepository):
    def __init__(self) -> None:
        self.users: Dict[str, User] = {}
        self.packages: Dict[str, Package] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.transactions: Dict[str, Transaction] = {}
        self.jobs: Dict[str, ProvisioningJob] = {}
        self.lookups: List[str] = []
        self.fail_create_transaction = False
        self._lock = threading.Lock()

    def add_user(self, user: User) -> User:
        self.users[user.user_id] = user
        return user

    def add_package(self, package: Package) -> Package:
        self.packages[package.package_id] = package
        return package

    def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    def get_package(self, package_id: str) -> Optional[Package]:
        return self.packages.get(package_id)

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return self.subscriptions.get(subscription_id)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self.transactions.get(transaction_id)

    def get_transaction_by_reference(self, external_reference: str) -> Optional[Transaction]:
        self.lookups.append(external_reference)
        for transaction in self.transactions.values():
            if transaction.external_reference == external_reference:
                return transaction
        return None

    def get_transaction_by_external_id(self, external_id: str) -> Optional[Transaction]:
        self.lookups.append(external_id)
        for transaction in self.transactions.values():
            if transaction.external_id == external_id:
                return transaction
        return None

    def get_paid_transaction(self, subscription_id: str) -> Optional[Transaction]:
        for transaction in self.transactions.values():
            if transaction.subscription_id == subscription_id and transaction.status == TransactionStatus.SUCCESS:
                return transaction
        return None

    def create_subscription(self, subscription: Subscription) -> Subscription:
        self.subscriptions[subscription.subscription_id] = subscription
        return subscription

    def create_transaction(self, transaction: Transaction) -> Transaction:
        if self.fail_create_transaction:
            raise RuntimeError("database unavailable")
        self.transactions[transaction.transaction_id] = transaction
        return transaction

    def attach_invoice(
        self,
        transaction_id: str,
        *,
        external_reference: str,
        metadata: Mapping[str, Any],
    ) -> Optional[Transaction]:
        with self._lock:
            transaction = self.transactions.get(transaction_id)
            if transaction is None or transaction.external_reference is not None:
                return None
            updated = transaction.model_copy(
                update={
                    "external_reference": external_reference,
                    "metadata": {**transaction.metadata, **metadata},
                }
            )
            self.transactions[transaction_id] = updated
            return updated

    def delete_checkout(self, *, subscription_id: Optional[str], transaction_id: str) -> None:
        self.transactions.pop(transaction_id, None)
        if subscription_id:
            self.subscriptions.pop(subscription_id, None)

    def settle_transaction(
        self,
        transaction_id: str,
        *,
        status: TransactionStatus,
        payment_method: Optional[str],
        payment_channel: Optional[str],
        metadata: Mapping[str, Any],
    ) -> Optional[Transaction]:
        with self._lock:
            transaction = self.transactions.get(transaction_id)
            if transaction is None or transaction.status != TransactionStatus.PENDING:
                return None
            updated = transaction.model_copy(
                update={
                    "status": status,
                    "payment_method": payment_method or transaction.payment_method,
                    "payment_channel": payment_channel or transaction.payment_channel,
                    "metadata": {**transaction.metadata, **metadata},
                    "updated_at": datetime.now(timezone.utc),
                }
            )
            self.transactions[transaction_id] = updated
            return updated

    def activate_subscription(self, subscription_id: str, *, renewed_at: datetime) -> Optional[Subscription]:
        with self._lock:
            subscription = self.subscriptions.get(subscription_id)
            if subscription is None or subscription.status != SubscriptionStatus.PENDING:
                return None
            updated = subscription.model_copy(
                update={"status": SubscriptionStatus.ACTIVE, "last_renewal_at": renewed_at}
            )
            self.subscriptions[subscription_id] = updated
            return updated

    def set_user_router_account(self, user_id: str, account_name: str) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            return None
        updated = user.model_copy(update={"router_account_name": account_name})
        self.users[user_id] = updated
        return updated

    def credit_user_balance(self, user_id: str, amount: int) -> Optional[User]:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return None
            updated = user.model_copy(update={"balance": user.balance + amount})
            self.users[user_id] = updated
            return updated

    def save_provisioning_job(self, job: ProvisioningJob) -> ProvisioningJob:
        self.jobs[job.subscription_id] = job
        return job

    def get_provisioning_job(self, subscription_id: str) -> Optional[ProvisioningJob]:
        return self.jobs.get(subscription_id)

    def list_due_provisioning_jobs(self, now: datetime, limit: int = 50) -> Sequence[ProvisioningJob]:
        due = [
            job
            for job in self.jobs.values()
            if job.status == ProvisioningJobStatus.PENDING and job.next_attempt_at <= now
        ]
        return sorted(due, key=lambda job: job.next_attempt_at)[:limit]

    def list_unqueued_paid_subscriptions(self, settled_before: datetime, limit: int = 50) -> Sequence[Subscription]:
        paid = {
            transaction.subscription_id
            for transaction in self.transactions.values()
            if transaction.status == TransactionStatus.SUCCESS and transaction.updated_at <= settled_before
        }
        orphaned = [
            subscription
            for subscription in self.subscriptions.values()
            if subscription.status == SubscriptionStatus.PENDING
            and subscription.subscription_id in paid
            and subscription.subscription_id not in self.jobs
        ]
        return sorted(orphaned, key=lambda subscription: subscription.created_at)[:limit]

    def delete_stale_checkouts(self, cutoff: datetime) -> int:
        stale = [
            transaction
            for transaction in self.transactions.values()
            if transaction.status == TransactionStatus.PENDING
            and transaction.checkout_method == CheckoutMethod.XENDIT
            and transaction.external_reference is None
            and transaction.created_at < cutoff
        ]
        for transaction in stale:
            self.delete_checkout(subscription_id=transaction.subscription_id, transaction_id=transaction.transaction_id)
        return len(stale)


class FakePaymentGateway:
    name = "fake"

    def __init__(self, callback_token: str = CALLBACK_TOKEN) -> None:
        self.callback_token = callback_token
        self.requests: List[InvoiceRequest] = []
        self.fail_with: Optional[Exception] = None

    def create_invoice(self, request: InvoiceRequest) -> Invoice:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        invoice_id = f"inv-{len(self.requests)}"
        return Invoice(
            invoice_id=invoice_id,
            external_id=request.external_id,
            status="PENDING",
            amount=request.amount,
            invoice_url=f"https://checkout.test/{invoice_id}",
            expiry_date=datetime.now(timezone.utc) + timedelta(days=1),
        )

    def get_invoice(self, invoice_id: str) -> Invoice:
        raise NotImplementedError

    def get_balance(self) -> GatewayBalance:
        return GatewayBalance(balance=0)

    def verify_callback_token(self, token: Optional[str]) -> bool:
        return bool(token) and token == self.callback_token


class RecordingRouterClient:
    """Router double that remembers every provisioning call."""

    def __init__(self) -> None:
        self.calls: List[Tuple[ServiceType, AccountRequest]] = []
        self.accounts: Dict[Tuple[ServiceType, str], AccountRequest] = {}
        self.fail_with: Optional[Exception] = None
        self._lock = threading.Lock()

    def ensure_account(self, service_type: ServiceType, request: AccountRequest) -> ProvisioningResult:
        with self._lock:
            self.calls.append((service_type, request))
            if self.fail_with is not None:
                raise self.fail_with
            key = (service_type, request.name)
            outcome = ProvisioningOutcome.UPDATED if key in self.accounts else ProvisioningOutcome.CREATED
            self.accounts[key] = request
            return ProvisioningResult(service_type=service_type, outcome=outcome)


class StaticClientSource:
    def __init__(self, client: RecordingRouterClient) -> None:
        self.client = client
        self.resolved = 0

    def get_client(self) -> RecordingRouterClient:
        self.resolved += 1
        return self.client


@pytest.fixture
def repository() -> InMemoryBillingRepository:
    repo = InMemoryBillingRepository()
    repo.add_user(User(user_id="U1", name="Jane Doe", email="jane@example.com", phone="+628111"))
    repo.add_package(
        Package(
            package_id="pkg-home",
            name="Home 20M",
            price=100000,
            duration_days=30,
            package_type=PackageType.PPPOE,
            speed_profile="20M/20M",
            router_profile="home-20m",
        )
    )
    repo.add_package(
        Package(
            package_id="pkg-combo",
            name="Combo",
            price=150000,
            duration_days=30,
            package_type=PackageType.BOTH,
        )
    )
    repo.add_package(
        Package(
            package_id="pkg-retired",
            name="Legacy",
            price=50000,
            duration_days=7,
            package_type=PackageType.HOTSPOT,
            is_active=False,
        )
    )
    return repo


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def router_client() -> RecordingRouterClient:
    return RecordingRouterClient()


@pytest.fixture
def subscription_service(repository, gateway) -> SubscriptionService:
    return SubscriptionService(
        repository=repository,
        gateway=gateway,
        app_base_url="https://isp.test",
        pending_checkout_ttl_minutes=60,
    )


@pytest.fixture
def reconciliation_service(repository, gateway, router_client) -> ReconciliationService:
    return ReconciliationService(
        repository=repository,
        gateway=gateway,
        clients=StaticClientSource(router_client),
        default_profile="default",
        max_attempts=3,
        retry_backoff_seconds=60.0,
    )
