"""API schemas for checkout, payment callback, and recovery endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import (
    CheckoutResult,
    ReconciliationResult,
    RetrySweepSummary,
    Subscription,
    Transaction,
)
from ..provisioning import ProvisioningResult


class SubscriptionCreateRequest(BaseModel):
    user_id: str = Field(alias="userId", min_length=1)
    package_id: str = Field(alias="packageId", min_length=1)
    payment_method: Optional[str] = Field(alias="paymentMethod", default=None)

    model_config = ConfigDict(populate_by_name=True)


class TopupCreateRequest(BaseModel):
    user_id: str = Field(alias="userId", min_length=1)
    amount: int

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionOut(BaseModel):
    id: str
    user_id: str = Field(alias="userId")
    package_id: str = Field(alias="packageId")
    status: str
    start_date: datetime = Field(alias="startDate")
    end_date: datetime = Field(alias="endDate")
    account_name: str = Field(alias="accountName")
    account_secret: str = Field(alias="accountSecret")
    last_renewal_at: Optional[datetime] = Field(alias="lastRenewalAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "SubscriptionOut":
        return cls(
            id=subscription.subscription_id,
            user_id=subscription.user_id,
            package_id=subscription.package_id,
            status=subscription.status.value,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            account_name=subscription.account_name,
            account_secret=subscription.account_secret,
            last_renewal_at=subscription.last_renewal_at,
        )


class TransactionOut(BaseModel):
    id: str
    user_id: str = Field(alias="userId")
    subscription_id: Optional[str] = Field(alias="subscriptionId", default=None)
    type: str
    amount: int
    status: str
    payment_method: str = Field(alias="paymentMethod")
    external_id: Optional[str] = Field(alias="externalId", default=None)
    external_reference: Optional[str] = Field(alias="externalReference", default=None)
    payment_channel: Optional[str] = Field(alias="paymentChannel", default=None)
    description: Optional[str] = None
    invoice_url: Optional[str] = Field(alias="invoiceUrl", default=None)
    expiry_date: Optional[datetime] = Field(alias="expiryDate", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_transaction(
        cls,
        transaction: Transaction,
        *,
        invoice_url: Optional[str] = None,
        expiry_date: Optional[datetime] = None,
    ) -> "TransactionOut":
        return cls(
            id=transaction.transaction_id,
            user_id=transaction.user_id,
            subscription_id=transaction.subscription_id,
            type=transaction.transaction_type.value,
            amount=transaction.amount,
            status=transaction.status.value,
            payment_method=transaction.checkout_method.value,
            external_id=transaction.external_id,
            external_reference=transaction.external_reference,
            payment_channel=transaction.payment_channel,
            description=transaction.description,
            invoice_url=invoice_url,
            expiry_date=expiry_date,
        )


class CheckoutData(BaseModel):
    subscription: Optional[SubscriptionOut] = None
    transaction: TransactionOut


class CheckoutResponse(BaseModel):
    success: bool = True
    message: str
    data: CheckoutData

    @classmethod
    def from_result(cls, result: CheckoutResult, *, message: str) -> "CheckoutResponse":
        subscription = SubscriptionOut.from_subscription(result.subscription) if result.subscription else None
        transaction = TransactionOut.from_transaction(
            result.transaction,
            invoice_url=result.invoice_url,
            expiry_date=result.expiry_date,
        )
        return cls(message=message, data=CheckoutData(subscription=subscription, transaction=transaction))


class ProvisioningResultOut(BaseModel):
    service_type: str = Field(alias="serviceType")
    outcome: str

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: ProvisioningResult) -> "ProvisioningResultOut":
        return cls(service_type=result.service_type.value, outcome=result.outcome.value)


class ReconciliationResponse(BaseModel):
    success: bool = True
    message: str
    outcome: str
    transaction_id: Optional[str] = Field(alias="transactionId", default=None)
    subscription: Optional[SubscriptionOut] = None
    provisioning: List[ProvisioningResultOut] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: ReconciliationResult, *, message: str) -> "ReconciliationResponse":
        return cls(
            message=message,
            outcome=result.outcome.value,
            transaction_id=result.transaction.transaction_id if result.transaction else None,
            subscription=SubscriptionOut.from_subscription(result.subscription) if result.subscription else None,
            provisioning=[ProvisioningResultOut.from_result(item) for item in result.provisioning],
        )


class RetrySweepResponse(BaseModel):
    attempted: int
    provisioned: int
    rescheduled: int
    abandoned: int

    @classmethod
    def from_summary(cls, summary: RetrySweepSummary) -> "RetrySweepResponse":
        return cls(**summary.model_dump())


class PurgeResponse(BaseModel):
    removed: int


class CallbackAck(BaseModel):
    """Receipt returned to the payment gateway; carries no account details."""

    success: bool = True
    message: str
    outcome: str
    transaction_id: Optional[str] = Field(alias="transactionId", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: ReconciliationResult, *, message: str) -> "CallbackAck":
        return cls(
            message=message,
            outcome=result.outcome.value,
            transaction_id=result.transaction.transaction_id if result.transaction else None,
        )
