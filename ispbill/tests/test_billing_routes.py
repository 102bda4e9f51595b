from __future__ import annotations

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from ispbill.app.billing import SubscriptionStatus
from ispbill.app.payments import GatewayConnectionError
from ispbill.app.provisioning import RouterConnectionError
from ispbill.app.routes import billing as billing_routes
from ispbill.app.schemas.billing import SubscriptionCreateRequest, TopupCreateRequest

CALLBACK_URL = "/api/payments/xendit/callback"
CALLBACK_TOKEN = "callback-secret"


@pytest.fixture
def wired(monkeypatch, subscription_service, reconciliation_service):
    monkeypatch.setattr(billing_routes, "get_subscription_service", lambda: subscription_service)
    monkeypatch.setattr(billing_routes, "get_reconciliation_service", lambda: reconciliation_service)


@pytest.fixture
def client(wired):
    app = FastAPI()
    app.include_router(billing_routes.router)
    return TestClient(app)


def _checkout(**overrides):
    payload = {"userId": "U1", "packageId": "pkg-home"}
    payload.update(overrides)
    return billing_routes.create_subscription(SubscriptionCreateRequest(**payload))


def test_create_subscription_returns_checkout(wired):
    response = _checkout()

    assert response.success is True
    assert response.message == "Subscription created successfully"
    assert response.data.subscription.status == "PENDING"
    assert response.data.subscription.account_name.startswith("janedoe-")
    assert response.data.transaction.invoice_url == "https://checkout.test/inv-1"
    assert response.data.transaction.payment_method == "XENDIT"


def test_create_subscription_unknown_package_is_404(wired):
    with pytest.raises(HTTPException) as excinfo:
        _checkout(packageId="pkg-missing")

    assert excinfo.value.status_code == 404
    assert excinfo.value.detail["error"] == "not_found"


def test_create_subscription_gateway_outage_is_503(wired, gateway, repository):
    gateway.fail_with = GatewayConnectionError(message="Timed out contacting the payment gateway")

    with pytest.raises(HTTPException) as excinfo:
        _checkout()

    assert excinfo.value.status_code == 503
    assert repository.subscriptions == {}


def test_create_topup_returns_checkout_without_subscription(wired):
    response = billing_routes.create_topup(TopupCreateRequest(userId="U1", amount=25000))

    assert response.data.subscription is None
    assert response.data.transaction.type == "TOPUP"
    assert response.data.transaction.amount == 25000


def test_callback_rejects_invalid_token(client, repository):
    checkout = _checkout()

    response = client.post(
        CALLBACK_URL,
        json={"id": checkout.data.transaction.external_reference, "status": "PAID"},
        headers={"x-callback-token": "nope"},
    )

    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "authentication_failed"
    assert repository.lookups == []


def test_callback_rejects_non_json_body(client):
    response = client.post(
        CALLBACK_URL,
        content=b"not json",
        headers={"x-callback-token": CALLBACK_TOKEN, "content-type": "application/json"},
    )

    assert response.status_code == 400


def test_callback_for_unknown_invoice_is_404(client):
    response = client.post(
        CALLBACK_URL,
        json={"id": "inv-unknown", "status": "PAID"},
        headers={"x-callback-token": CALLBACK_TOKEN},
    )

    assert response.status_code == 404


def test_callback_provisions_and_acknowledges(client, repository, router_client):
    checkout = _checkout()
    body = {"id": checkout.data.transaction.external_reference, "status": "PAID", "paid_amount": 100000}

    first = client.post(CALLBACK_URL, json=body, headers={"x-callback-token": CALLBACK_TOKEN})
    second = client.post(CALLBACK_URL, json=body, headers={"x-callback-token": CALLBACK_TOKEN})

    assert first.status_code == 200
    assert first.json() == {
        "success": True,
        "message": "Payment processed and service provisioned",
        "outcome": "provisioned",
        "transactionId": checkout.data.transaction.id,
    }
    assert second.status_code == 200
    assert second.json()["outcome"] == "already_processed"
    assert len(router_client.calls) == 1
    assert repository.subscriptions[checkout.data.subscription.id].status == SubscriptionStatus.ACTIVE


def test_callback_acknowledges_when_router_is_down(client, router_client):
    checkout = _checkout()
    router_client.fail_with = RouterConnectionError(message="Router offline")

    response = client.post(
        CALLBACK_URL,
        json={"id": checkout.data.transaction.external_reference, "status": "PAID"},
        headers={"x-callback-token": CALLBACK_TOKEN},
    )

    assert response.status_code == 200
    assert response.json()["outcome"] == "provisioning_failed"
    assert checkout.data.subscription.account_secret not in response.text


def test_callback_unexpected_failure_is_500(client, monkeypatch):
    class Exploding:
        def handle_notification(self, token, payload):
            raise RuntimeError("database went away")

    monkeypatch.setattr(billing_routes, "get_reconciliation_service", lambda: Exploding())

    response = client.post(CALLBACK_URL, json={"id": "inv-1", "status": "PAID"}, headers={"x-callback-token": "x"})

    assert response.status_code == 500
    assert "database" not in response.text


def test_reprovision_route_maps_conflict(wired):
    checkout = _checkout()

    with pytest.raises(HTTPException) as excinfo:
        billing_routes.reprovision_subscription(checkout.data.subscription.id)

    assert excinfo.value.status_code == 409


def test_retry_and_purge_routes_report_counts(wired):
    summary = billing_routes.retry_provisioning(limit=10)
    purged = billing_routes.purge_stale_checkouts()

    assert summary.attempted == 0
    assert purged.removed == 0
