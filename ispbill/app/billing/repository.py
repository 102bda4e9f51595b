"""Persistence layer for billing domain objects."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import psycopg2.extras

from ..db import PostgresRepository
from .models import (
    AccountStatus,
    CheckoutMethod,
    Package,
    PackageType,
    ProvisioningJob,
    ProvisioningJobStatus,
    Subscription,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)


def _row_to_user(row: dict) -> User:
    return User(
        user_id=row["user_id"],
        name=row["name"],
        email=row.get("email"),
        phone=row.get("phone"),
        status=AccountStatus(row["status"]),
        balance=int(row.get("balance") or 0),
        router_account_name=row.get("router_account_name"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_package(row: dict) -> Package:
    return Package(
        package_id=row["package_id"],
        name=row["name"],
        price=int(row["price"]),
        duration_days=int(row["duration_days"]),
        package_type=PackageType(row["package_type"]),
        data_cap_mb=row.get("data_cap_mb"),
        speed_profile=row.get("speed_profile"),
        router_profile=row.get("router_profile"),
        is_active=bool(row.get("is_active", True)),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        subscription_id=row["subscription_id"],
        user_id=row["user_id"],
        package_id=row["package_id"],
        status=SubscriptionStatus(row["status"]),
        start_date=row["start_date"],
        end_date=row["end_date"],
        account_name=row["account_name"],
        account_secret=row["account_secret"],
        last_renewal_at=row.get("last_renewal_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_transaction(row: dict) -> Transaction:
    return Transaction(
        transaction_id=row["transaction_id"],
        user_id=row["user_id"],
        subscription_id=row.get("subscription_id"),
        transaction_type=TransactionType(row["transaction_type"]),
        amount=int(row["amount"]),
        status=TransactionStatus(row["status"]),
        checkout_method=CheckoutMethod(row["checkout_method"]),
        external_id=row.get("external_id"),
        external_reference=row.get("external_reference"),
        payment_method=row.get("payment_method"),
        payment_channel=row.get("payment_channel"),
        description=row.get("description"),
        metadata=row.get("metadata") or {},
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_job(row: dict) -> ProvisioningJob:
    return ProvisioningJob(
        subscription_id=row["subscription_id"],
        transaction_id=row.get("transaction_id"),
        status=ProvisioningJobStatus(row["status"]),
        attempts=int(row["attempts"]),
        last_error=row.get("last_error"),
        next_attempt_at=row["next_attempt_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresBillingRepository(PostgresRepository):
    """Concrete repository persisting billing models in PostgreSQL.

    Status transitions are conditional updates so that concurrent callers
    racing on the same row observe exactly one winner.
    """

    def _fetch_one(self, query: str, params: Any) -> Optional[dict]:
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return cursor.fetchone()

    def get_user(self, user_id: str) -> Optional[User]:
        row = self._fetch_one("SELECT * FROM users WHERE user_id = %s LIMIT 1", (user_id,))
        return _row_to_user(row) if row else None

    def get_package(self, package_id: str) -> Optional[Package]:
        row = self._fetch_one("SELECT * FROM packages WHERE package_id = %s LIMIT 1", (package_id,))
        return _row_to_package(row) if row else None

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        row = self._fetch_one(
            "SELECT * FROM subscriptions WHERE subscription_id = %s LIMIT 1",
            (subscription_id,),
        )
        return _row_to_subscription(row) if row else None

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        row = self._fetch_one(
            "SELECT * FROM transactions WHERE transaction_id = %s LIMIT 1",
            (transaction_id,),
        )
        return _row_to_transaction(row) if row else None

    def get_transaction_by_reference(self, external_reference: str) -> Optional[Transaction]:
        row = self._fetch_one(
            "SELECT * FROM transactions WHERE external_reference = %s LIMIT 1",
            (external_reference,),
        )
        return _row_to_transaction(row) if row else None

    def get_transaction_by_external_id(self, external_id: str) -> Optional[Transaction]:
        row = self._fetch_one(
            "SELECT * FROM transactions WHERE external_id = %s LIMIT 1",
            (external_id,),
        )
        return _row_to_transaction(row) if row else None

    def get_paid_transaction(self, subscription_id: str) -> Optional[Transaction]:
        row = self._fetch_one(
            """
            SELECT *
            FROM transactions
            WHERE subscription_id = %s AND status = %s
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            (subscription_id, TransactionStatus.SUCCESS.value),
        )
        return _row_to_transaction(row) if row else None

    def create_subscription(self, subscription: Subscription) -> Subscription:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO subscriptions (
                    subscription_id,
                    user_id,
                    package_id,
                    status,
                    start_date,
                    end_date,
                    account_name,
                    account_secret
                )
                VALUES (%(subscription_id)s, %(user_id)s, %(package_id)s, %(status)s,
                        %(start_date)s, %(end_date)s, %(account_name)s, %(account_secret)s)
                RETURNING *
                """,
                {
                    "subscription_id": subscription.subscription_id,
                    "user_id": subscription.user_id,
                    "package_id": subscription.package_id,
                    "status": subscription.status.value,
                    "start_date": subscription.start_date,
                    "end_date": subscription.end_date,
                    "account_name": subscription.account_name,
                    "account_secret": subscription.account_secret,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)

    def create_transaction(self, transaction: Transaction) -> Transaction:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO transactions (
                    transaction_id,
                    user_id,
                    subscription_id,
                    transaction_type,
                    amount,
                    status,
                    checkout_method,
                    external_id,
                    description,
                    metadata
                )
                VALUES (%(transaction_id)s, %(user_id)s, %(subscription_id)s,
                        %(transaction_type)s, %(amount)s, %(status)s, %(checkout_method)s,
                        %(external_id)s, %(description)s, %(metadata)s)
                RETURNING *
                """,
                {
                    "transaction_id": transaction.transaction_id,
                    "user_id": transaction.user_id,
                    "subscription_id": transaction.subscription_id,
                    "transaction_type": transaction.transaction_type.value,
                    "amount": transaction.amount,
                    "status": transaction.status.value,
                    "checkout_method": transaction.checkout_method.value,
                    "external_id": transaction.external_id,
                    "description": transaction.description,
                    "metadata": psycopg2.extras.Json(transaction.metadata),
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist transaction")
            return _row_to_transaction(row)

    def attach_invoice(
        self,
        transaction_id: str,
        *,
        external_reference: str,
        metadata: Mapping[str, Any],
    ) -> Optional[Transaction]:
        """Store the gateway invoice id; an existing reference is never replaced."""

        row = self._fetch_one(
            """
            UPDATE transactions
            SET external_reference = %s,
                metadata = metadata || %s::jsonb,
                updated_at = NOW()
            WHERE transaction_id = %s AND external_reference IS NULL
            RETURNING *
            """,
            (external_reference, psycopg2.extras.Json(dict(metadata)), transaction_id),
        )
        return _row_to_transaction(row) if row else None

    def delete_checkout(self, *, subscription_id: Optional[str], transaction_id: str) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM transactions WHERE transaction_id = %s", (transaction_id,))
            if subscription_id:
                cursor.execute("DELETE FROM subscriptions WHERE subscription_id = %s", (subscription_id,))

    def settle_transaction(
        self,
        transaction_id: str,
        *,
        status: TransactionStatus,
        payment_method: Optional[str],
        payment_channel: Optional[str],
        metadata: Mapping[str, Any],
    ) -> Optional[Transaction]:
        """Move a PENDING transaction to a terminal status.

        Returns ``None`` when the row was already terminal, which is how
        concurrent deliveries of the same notification lose the race.
        """

        row = self._fetch_one(
            """
            UPDATE transactions
            SET status = %s,
                payment_method = COALESCE(%s, payment_method),
                payment_channel = COALESCE(%s, payment_channel),
                metadata = metadata || %s::jsonb,
                updated_at = NOW()
            WHERE transaction_id = %s AND status = %s
            RETURNING *
            """,
            (
                status.value,
                payment_method,
                payment_channel,
                psycopg2.extras.Json(dict(metadata)),
                transaction_id,
                TransactionStatus.PENDING.value,
            ),
        )
        return _row_to_transaction(row) if row else None

    def activate_subscription(self, subscription_id: str, *, renewed_at: datetime) -> Optional[Subscription]:
        row = self._fetch_one(
            """
            UPDATE subscriptions
            SET status = %s,
                last_renewal_at = %s,
                updated_at = NOW()
            WHERE subscription_id = %s AND status = %s
            RETURNING *
            """,
            (
                SubscriptionStatus.ACTIVE.value,
                renewed_at,
                subscription_id,
                SubscriptionStatus.PENDING.value,
            ),
        )
        return _row_to_subscription(row) if row else None

    def set_user_router_account(self, user_id: str, account_name: str) -> Optional[User]:
        row = self._fetch_one(
            """
            UPDATE users
            SET router_account_name = %s, updated_at = NOW()
            WHERE user_id = %s
            RETURNING *
            """,
            (account_name, user_id),
        )
        return _row_to_user(row) if row else None

    def credit_user_balance(self, user_id: str, amount: int) -> Optional[User]:
        row = self._fetch_one(
            """
            UPDATE users
            SET balance = balance + %s, updated_at = NOW()
            WHERE user_id = %s
            RETURNING *
            """,
            (amount, user_id),
        )
        return _row_to_user(row) if row else None

    def save_provisioning_job(self, job: ProvisioningJob) -> ProvisioningJob:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO provisioning_jobs (
                    subscription_id,
                    transaction_id,
                    status,
                    attempts,
                    last_error,
                    next_attempt_at
                )
                VALUES (%(subscription_id)s, %(transaction_id)s, %(status)s, %(attempts)s,
                        %(last_error)s, %(next_attempt_at)s)
                ON CONFLICT (subscription_id) DO UPDATE SET
                    transaction_id = COALESCE(EXCLUDED.transaction_id, provisioning_jobs.transaction_id),
                    status = EXCLUDED.status,
                    attempts = EXCLUDED.attempts,
                    last_error = EXCLUDED.last_error,
                    next_attempt_at = EXCLUDED.next_attempt_at,
                    updated_at = NOW()
                RETURNING *
                """,
                {
                    "subscription_id": job.subscription_id,
                    "transaction_id": job.transaction_id,
                    "status": job.status.value,
                    "attempts": job.attempts,
                    "last_error": job.last_error,
                    "next_attempt_at": job.next_attempt_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist provisioning job")
            return _row_to_job(row)

    def get_provisioning_job(self, subscription_id: str) -> Optional[ProvisioningJob]:
        row = self._fetch_one(
            "SELECT * FROM provisioning_jobs WHERE subscription_id = %s LIMIT 1",
            (subscription_id,),
        )
        return _row_to_job(row) if row else None

    def list_due_provisioning_jobs(self, now: datetime, limit: int = 50) -> List[ProvisioningJob]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM provisioning_jobs
                WHERE status = %s AND next_attempt_at <= %s
                ORDER BY next_attempt_at ASC
                LIMIT %s
                """,
                (ProvisioningJobStatus.PENDING.value, now, limit),
            )
            rows = cursor.fetchall() or []
            return [_row_to_job(row) for row in rows]

    def list_unqueued_paid_subscriptions(self, settled_before: datetime, limit: int = 50) -> List[Subscription]:
        """PENDING subscriptions with a settled payment and no provisioning job row."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT s.*
                FROM subscriptions s
                WHERE s.status = %s
                  AND EXISTS (
                      SELECT 1
                      FROM transactions t
                      WHERE t.subscription_id = s.subscription_id
                        AND t.status = %s
                        AND t.updated_at <= %s
                  )
                  AND NOT EXISTS (
                      SELECT 1 FROM provisioning_jobs j WHERE j.subscription_id = s.subscription_id
                  )
                ORDER BY s.created_at ASC
                LIMIT %s
                """,
                (
                    SubscriptionStatus.PENDING.value,
                    TransactionStatus.SUCCESS.value,
                    settled_before,
                    limit,
                ),
            )
            rows = cursor.fetchall() or []
            return [_row_to_subscription(row) for row in rows]

    def delete_stale_checkouts(self, cutoff: datetime) -> int:
        """Remove gateway checkouts that never received an invoice reference."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                DELETE FROM transactions
                WHERE status = %s
                  AND checkout_method = %s
                  AND external_reference IS NULL
                  AND created_at < %s
                RETURNING subscription_id
                """,
                (TransactionStatus.PENDING.value, CheckoutMethod.XENDIT.value, cutoff),
            )
            rows: List[Dict[str, Any]] = cursor.fetchall() or []
            subscription_ids = [row["subscription_id"] for row in rows if row.get("subscription_id")]
            if subscription_ids:
                cursor.execute(
                    """
                    DELETE FROM subscriptions
                    WHERE subscription_id = ANY(%s) AND status = %s
                    """,
                    (subscription_ids, SubscriptionStatus.PENDING.value),
                )
            return len(rows)


__all__ = ["PostgresBillingRepository"]
