import json

import httpx
import pytest

from ispbill.app.errors import NotFoundError
from ispbill.app.provisioning import (
    AccountRequest,
    ProvisioningOutcome,
    RouterAuthenticationError,
    RouterClientProvider,
    RouterConfig,
    RouterConfigService,
    RouterConnectionError,
    RouterNotConfiguredError,
    RouterOSClient,
    RouterRequestError,
    ServiceType,
)

CONFIG = RouterConfig(
    config_id=1,
    name="core",
    host="10.0.0.1",
    username="api",
    password="router-pass",
    use_ssl=False,
    is_active=True,
)
REQUEST = AccountRequest(name="janedoe-1", secret="s3cretpass12", profile="home-20m", comment="User: Jane Doe")


def _client(handler):
    return RouterOSClient(CONFIG, timeout=2.0, transport=httpx.MockTransport(handler))


def test_base_url_uses_scheme_defaults():
    assert CONFIG.base_url == "http://10.0.0.1:80"
    assert RouterConfig(name="edge", host="edge.local/", username="a", password="b").base_url == "https://edge.local:443"


def test_ensure_account_creates_missing_account():
    seen = []

    def handler(request):
        seen.append(request)
        if request.method == "GET":
            assert request.url.path == "/rest/ppp/secret"
            assert request.url.params["name"] == "janedoe-1"
            return httpx.Response(200, json=[])
        assert request.method == "PUT"
        return httpx.Response(200, json={".id": "*7", "name": "janedoe-1", "profile": "home-20m"})

    with _client(handler) as client:
        result = client.ensure_account(ServiceType.PPPOE, REQUEST)

    assert result.outcome == ProvisioningOutcome.CREATED
    assert result.account.account_id == "*7"
    body = json.loads(seen[1].content)
    assert body == {
        "name": "janedoe-1",
        "password": "s3cretpass12",
        "profile": "home-20m",
        "disabled": "false",
        "service": "pppoe",
        "comment": "User: Jane Doe",
    }
    assert seen[1].headers["authorization"].startswith("Basic ")


def test_ensure_account_updates_existing_account():
    seen = []

    def handler(request):
        seen.append(request)
        if request.method == "GET":
            return httpx.Response(200, json=[{".id": "*3", "name": "janedoe-1", "profile": "old"}])
        assert request.method == "PATCH"
        assert request.url.path == "/rest/ip/hotspot/user/*3"
        return httpx.Response(200, json={".id": "*3", "name": "janedoe-1", "profile": "home-20m"})

    with _client(handler) as client:
        result = client.ensure_account(ServiceType.HOTSPOT, REQUEST)

    assert result.outcome == ProvisioningOutcome.UPDATED
    assert result.account.profile == "home-20m"
    body = json.loads(seen[1].content)
    assert "name" not in body
    assert "service" not in body
    assert body["password"] == "s3cretpass12"


def test_duplicate_name_rejection_counts_as_success():
    lookups = []

    def handler(request):
        if request.method == "GET":
            lookups.append(request)
            if len(lookups) == 1:
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=[{".id": "*9", "name": "janedoe-1"}])
        return httpx.Response(400, json={"error": 400, "detail": "failure: secret with the same name already exists"})

    with _client(handler) as client:
        result = client.ensure_account(ServiceType.PPPOE, REQUEST)

    assert result.outcome == ProvisioningOutcome.ALREADY_EXISTS
    assert result.account.account_id == "*9"


def test_rejected_request_raises_request_error():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json=[])
        return httpx.Response(400, json={"error": 400, "detail": "input does not match any value of profile"})

    with _client(handler) as client, pytest.raises(RouterRequestError) as excinfo:
        client.ensure_account(ServiceType.PPPOE, REQUEST)

    assert "profile" in excinfo.value.message
    assert excinfo.value.detail["device_status"] == 400
    assert excinfo.value.retryable is False


@pytest.mark.parametrize("status_code", [401, 403])
def test_rejected_credentials_raise_authentication_error(status_code):
    with _client(lambda request: httpx.Response(status_code)) as client:
        with pytest.raises(RouterAuthenticationError) as excinfo:
            client.list_accounts(ServiceType.PPPOE)

    assert excinfo.value.code == "router_auth_failed"


@pytest.mark.parametrize(
    "error",
    [httpx.ConnectTimeout, httpx.ReadTimeout, httpx.ConnectError],
)
def test_unreachable_router_raises_connection_error(error):
    def handler(request):
        raise error("boom", request=request)

    with _client(handler) as client, pytest.raises(RouterConnectionError) as excinfo:
        client.ensure_account(ServiceType.PPPOE, REQUEST)

    assert excinfo.value.retryable is True
    assert excinfo.value.status_code == 503
    assert "router-pass" not in str(excinfo.value.payload)


def test_closed_client_raises_connection_error():
    client = _client(lambda request: httpx.Response(200, json=[]))
    client.close()

    with pytest.raises(RouterConnectionError) as excinfo:
        client.list_accounts(ServiceType.PPPOE)

    assert excinfo.value.retryable is True
    assert excinfo.value.detail["host"] == "10.0.0.1"


def test_test_connection_reports_failures_as_false():
    with _client(lambda request: httpx.Response(401)) as client:
        assert client.test_connection() is False
    with _client(lambda request: httpx.Response(200, json={"uptime": "1d"})) as client:
        assert client.test_connection() is True


def test_list_active_sessions_normalizes_rows():
    def handler(request):
        assert request.url.path == "/rest/ppp/active"
        return httpx.Response(
            200,
            json=[{".id": "*1", "name": "janedoe-1", "address": "10.10.0.2", "caller-id": "AA:BB", "uptime": "5m"}],
        )

    with _client(handler) as client:
        sessions = client.list_active_sessions(ServiceType.PPPOE)

    assert len(sessions) == 1
    assert sessions[0].user == "janedoe-1"
    assert sessions[0].mac_address == "AA:BB"
    assert sessions[0].bytes_in == 0


def test_sync_accounts_reports_partial_failures():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json=[])
        if json.loads(request.content)["name"] == "bad":
            return httpx.Response(400, json={"detail": "invalid value"})
        return httpx.Response(201, json={".id": "*1", "name": "janedoe-1"})

    requests = [REQUEST, AccountRequest(name="bad", secret="whatever123")]
    with _client(handler) as client:
        report = client.sync_accounts(ServiceType.PPPOE, requests)

    assert report.success == 1
    assert report.failed == 1
    assert report.errors == ["Failed to sync account bad: invalid value"]


class _ConfigStore:
    def __init__(self, config=None):
        self.config = config
        self.saved = []
        self.lookups = 0

    def get_active_router_config(self):
        self.lookups += 1
        return self.config

    def list_router_configs(self):
        return [self.config] if self.config else []

    def save_router_config(self, config):
        self.config = config.model_copy(update={"config_id": 2, "is_active": True})
        self.saved.append(self.config)
        return self.config

    def delete_router_config(self, config_id):
        if self.config is None or self.config.config_id != config_id:
            return False
        self.config = None
        return True


def _factory(created):
    def build(config):
        client = RouterOSClient(config, transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
        created.append(client)
        return client

    return build


def test_provider_resolves_once_until_invalidated():
    store = _ConfigStore(CONFIG)
    created = []
    provider = RouterClientProvider(store, client_factory=_factory(created))

    assert provider.is_resolved is False
    first = provider.get_client()
    assert provider.get_client() is first
    assert store.lookups == 1

    provider.invalidate()
    assert provider.is_resolved is False
    second = provider.get_client()

    assert second is not first
    assert store.lookups == 2
    assert len(created) == 2


def test_provider_without_active_config_raises():
    provider = RouterClientProvider(_ConfigStore(), client_factory=_factory([]))

    with pytest.raises(RouterNotConfiguredError) as excinfo:
        provider.get_client()

    assert excinfo.value.status_code == 400


def test_saving_config_invalidates_cached_client():
    store = _ConfigStore(CONFIG)
    provider = RouterClientProvider(store, client_factory=_factory([]))
    service = RouterConfigService(repository=store, clients=provider)
    provider.get_client()

    saved = service.save_config(CONFIG.model_copy(update={"host": "10.0.0.2"}))

    assert saved.is_active is True
    assert provider.is_resolved is False
    assert provider.get_client().config.host == "10.0.0.2"


def test_deleting_unknown_config_raises_not_found():
    store = _ConfigStore(CONFIG)
    service = RouterConfigService(repository=store, clients=RouterClientProvider(store, client_factory=_factory([])))

    with pytest.raises(NotFoundError):
        service.delete_config(99)

    service.delete_config(1)
    assert service.get_active_config() is None
