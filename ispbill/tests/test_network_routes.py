from __future__ import annotations

from typing import List, Optional

import pytest
from fastapi import HTTPException

from ispbill.app.errors import NotFoundError
from ispbill.app.provisioning import (
    ActiveSession,
    RouterAccount,
    RouterConfig,
    RouterConnectionError,
    ServiceType,
)
from ispbill.app.routes import network as network_routes
from ispbill.app.schemas.network import RouterConfigRequest

ACTIVE = RouterConfig(config_id=1, name="core", host="10.0.0.1", username="api", password="secret", is_active=True)


class FakeConfigService:
    def __init__(self, active: Optional[RouterConfig] = None, connected: bool = True) -> None:
        self.active = active
        self.connected = connected
        self.saved: List[RouterConfig] = []

    def list_configs(self):
        return [self.active] if self.active else []

    def get_active_config(self):
        return self.active

    def save_config(self, config):
        self.saved.append(config)
        self.active = config.model_copy(update={"config_id": 7})
        return self.active

    def delete_config(self, config_id):
        if self.active is None or self.active.config_id != config_id:
            raise NotFoundError(message="Router configuration not found")
        self.active = None

    def check_connection(self):
        return self.connected


class FakeRouter:
    def __init__(self, fail_with: Optional[Exception] = None) -> None:
        self.fail_with = fail_with

    def list_accounts(self, service_type):
        if self.fail_with:
            raise self.fail_with
        return [RouterAccount(account_id="*1", name="janedoe-1", service_type=service_type)]

    def list_active_sessions(self, service_type):
        return [ActiveSession(session_id=f"*{service_type.value}", user="janedoe-1", service_type=service_type)]


class FakeProvider:
    def __init__(self, router: FakeRouter) -> None:
        self.router = router

    def get_client(self):
        return self.router


def _wire(monkeypatch, service, router=None):
    monkeypatch.setattr(network_routes, "get_router_config_service", lambda: service)
    monkeypatch.setattr(network_routes, "get_router_client_provider", lambda: FakeProvider(router or FakeRouter()))


def test_status_without_active_config(monkeypatch):
    _wire(monkeypatch, FakeConfigService())

    response = network_routes.router_status()

    assert response.configured is False
    assert response.connected is False


def test_status_reports_unreachable_router(monkeypatch):
    _wire(monkeypatch, FakeConfigService(ACTIVE, connected=False))

    response = network_routes.router_status()

    assert response.configured is True
    assert response.connected is False
    assert response.router.host == "10.0.0.1"
    assert response.message == "Router did not respond"


def test_save_config_activates_and_hides_password(monkeypatch):
    service = FakeConfigService()
    _wire(monkeypatch, service)

    response = network_routes.save_router_config(
        RouterConfigRequest(name="core", host="10.0.0.9", username="api", password="pw", useSsl=False)
    )

    assert service.saved[0].is_active is True
    assert response.id == 7
    assert "password" not in response.model_dump()


def test_delete_unknown_config_is_404(monkeypatch):
    _wire(monkeypatch, FakeConfigService(ACTIVE))

    with pytest.raises(HTTPException) as excinfo:
        network_routes.delete_router_config(42)

    assert excinfo.value.status_code == 404
    assert network_routes.delete_router_config(1).status_code == 204


def test_list_accounts_by_type(monkeypatch):
    _wire(monkeypatch, FakeConfigService(ACTIVE))

    response = network_routes.list_router_accounts(account_type="HOTSPOT")

    assert response.type == "hotspot"
    assert response.count == 1
    assert response.accounts[0].service_type == ServiceType.HOTSPOT


def test_list_active_sessions_merges_services(monkeypatch):
    _wire(monkeypatch, FakeConfigService(ACTIVE))

    response = network_routes.list_router_accounts(account_type="active")

    assert response.count == 2
    assert {session.service_type for session in response.sessions} == {ServiceType.PPPOE, ServiceType.HOTSPOT}


def test_unknown_account_type_is_400(monkeypatch):
    _wire(monkeypatch, FakeConfigService(ACTIVE))

    with pytest.raises(HTTPException) as excinfo:
        network_routes.list_router_accounts(account_type="vpn")

    assert excinfo.value.status_code == 400


def test_router_failure_maps_to_http_error(monkeypatch):
    _wire(monkeypatch, FakeConfigService(ACTIVE), FakeRouter(RouterConnectionError(message="Router offline")))

    with pytest.raises(HTTPException) as excinfo:
        network_routes.list_router_accounts(account_type="pppoe")

    assert excinfo.value.status_code == 503
