"""REST client for RouterOS network access routers.

Every call carries a bounded timeout. Failures are mapped onto three
distinguishable error kinds so callers can decide whether to retry:

* :class:`RouterConnectionError` - unreachable host, refused connection, timeout
* :class:`RouterAuthenticationError` - the router rejected the API credentials
* :class:`RouterRequestError` - the router rejected or could not parse a request
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

import httpx

from .exceptions import RouterAuthenticationError, RouterConnectionError, RouterRequestError
from .models import (
    AccountRequest,
    AccountSyncReport,
    ActiveSession,
    ProvisioningOutcome,
    ProvisioningResult,
    RouterAccount,
    RouterConfig,
    RouterProfile,
    ServiceType,
)

logger = logging.getLogger(__name__)

_ACCOUNT_PATHS = {
    ServiceType.PPPOE: "/ppp/secret",
    ServiceType.HOTSPOT: "/ip/hotspot/user",
}
_ACTIVE_PATHS = {
    ServiceType.PPPOE: "/ppp/active",
    ServiceType.HOTSPOT: "/ip/hotspot/active",
}
_PROFILE_PATHS = {
    ServiceType.PPPOE: "/ppp/profile",
    ServiceType.HOTSPOT: "/ip/hotspot/user/profile",
}

_DUPLICATE_MARKERS = ("already exists", "already have", "same name")


class NetworkProvisioningClient(Protocol):
    """Operations the reconciliation flow needs from a router."""

    def ensure_account(self, service_type: ServiceType, request: AccountRequest) -> ProvisioningResult:
        ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(body, Mapping):
        return str(body.get("detail") or body.get("message") or response.reason_phrase)
    return response.reason_phrase


def _is_duplicate(exc: RouterRequestError) -> bool:
    lowered = exc.message.lower()
    return any(marker in lowered for marker in _DUPLICATE_MARKERS)


class RouterOSClient:
    """Thin wrapper around the RouterOS ``/rest`` API using HTTP basic auth."""

    def __init__(
        self,
        config: RouterConfig,
        *,
        timeout: float = 10.0,
        verify: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config
        self._client = httpx.Client(
            base_url=f"{config.base_url}/rest",
            auth=(config.username, config.password),
            timeout=timeout,
            verify=verify,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "RouterOSClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        context = {"router": self.config.name, "host": self.config.host, "path": path}
        try:
            response = self._client.request(method, path, params=params, json=payload)
        except httpx.TimeoutException as exc:
            raise RouterConnectionError(
                message=f"Timed out contacting router {self.config.host}",
                detail=context,
            ) from exc
        except httpx.TransportError as exc:
            raise RouterConnectionError(
                message=f"Unable to connect to router {self.config.host}: {exc}",
                detail=context,
            ) from exc
        except RuntimeError as exc:
            # A config change closes the cached client while callers may still hold it.
            if not self._client.is_closed:
                raise
            raise RouterConnectionError(
                message=f"Client for router {self.config.host} was closed",
                detail=context,
            ) from exc

        if response.status_code in (401, 403):
            raise RouterAuthenticationError(
                message="Router rejected the configured credentials",
                detail=context,
            )
        if response.status_code >= 400:
            raise RouterRequestError(
                message=_error_message(response),
                detail={**context, "device_status": response.status_code},
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RouterRequestError(message="Router returned a malformed response", detail=context) from exc

    # System -----------------------------------------------------------------

    def get_system_resource(self) -> Dict[str, Any]:
        return self._request("GET", "/system/resource") or {}

    def test_connection(self) -> bool:
        try:
            self.get_system_resource()
        except (RouterConnectionError, RouterAuthenticationError, RouterRequestError) as exc:
            logger.warning(
                "Router connection test failed",
                extra={"router": self.config.name, "error_code": exc.code},
            )
            return False
        return True

    # Accounts ---------------------------------------------------------------

    def list_accounts(self, service_type: ServiceType) -> List[RouterAccount]:
        rows = self._request("GET", _ACCOUNT_PATHS[service_type]) or []
        return [RouterAccount.from_api(service_type, row) for row in rows]

    def find_account(self, service_type: ServiceType, name: str) -> Optional[RouterAccount]:
        rows = self._request("GET", _ACCOUNT_PATHS[service_type], params={"name": name}) or []
        for row in rows:
            if row.get("name") == name:
                return RouterAccount.from_api(service_type, row)
        return None

    def create_account(self, service_type: ServiceType, request: AccountRequest) -> RouterAccount:
        row = self._request("PUT", _ACCOUNT_PATHS[service_type], payload=request.to_api(service_type))
        if not isinstance(row, Mapping):
            row = {"name": request.name, "profile": request.profile, "comment": request.comment}
        return RouterAccount.from_api(service_type, row)

    def update_account(
        self,
        service_type: ServiceType,
        account_id: str,
        changes: Mapping[str, Any],
    ) -> Optional[RouterAccount]:
        row = self._request("PATCH", f"{_ACCOUNT_PATHS[service_type]}/{account_id}", payload=dict(changes))
        return RouterAccount.from_api(service_type, row) if isinstance(row, Mapping) else None

    def enable_account(self, service_type: ServiceType, account_id: str) -> None:
        self.update_account(service_type, account_id, {"disabled": "false"})

    def disable_account(self, service_type: ServiceType, account_id: str) -> None:
        self.update_account(service_type, account_id, {"disabled": "true"})

    def delete_account(self, service_type: ServiceType, account_id: str) -> None:
        self._request("DELETE", f"{_ACCOUNT_PATHS[service_type]}/{account_id}")

    def ensure_account(self, service_type: ServiceType, request: AccountRequest) -> ProvisioningResult:
        """Create the account, or bring an existing one with the same name in line.

        Safe to repeat: a second call with the same name updates in place, and
        a duplicate-name rejection from a racing create counts as success.
        """

        existing = self.find_account(service_type, request.name)
        if existing is not None:
            changes = request.to_api(service_type)
            changes.pop("name", None)
            updated = self.update_account(service_type, existing.account_id, changes)
            return ProvisioningResult(
                service_type=service_type,
                outcome=ProvisioningOutcome.UPDATED,
                account=updated or existing,
            )

        try:
            account = self.create_account(service_type, request)
        except RouterRequestError as exc:
            if not _is_duplicate(exc):
                raise
            logger.info(
                "Router account already exists",
                extra={"router": self.config.name, "account_name": request.name, "service_type": service_type.value},
            )
            return ProvisioningResult(
                service_type=service_type,
                outcome=ProvisioningOutcome.ALREADY_EXISTS,
                account=self.find_account(service_type, request.name),
            )
        return ProvisioningResult(service_type=service_type, outcome=ProvisioningOutcome.CREATED, account=account)

    def sync_accounts(self, service_type: ServiceType, requests: Iterable[AccountRequest]) -> AccountSyncReport:
        report = AccountSyncReport()
        for request in requests:
            try:
                self.ensure_account(service_type, request)
            except (RouterConnectionError, RouterAuthenticationError, RouterRequestError) as exc:
                report.failed += 1
                report.errors.append(f"Failed to sync account {request.name}: {exc.message}")
            else:
                report.success += 1
        return report

    # Sessions and profiles --------------------------------------------------

    def list_active_sessions(self, service_type: ServiceType) -> List[ActiveSession]:
        rows = self._request("GET", _ACTIVE_PATHS[service_type]) or []
        return [ActiveSession.from_api(service_type, row) for row in rows]

    def disconnect_session(self, service_type: ServiceType, session_id: str) -> None:
        self._request("DELETE", f"{_ACTIVE_PATHS[service_type]}/{session_id}")

    def list_profiles(self, service_type: ServiceType) -> List[RouterProfile]:
        rows = self._request("GET", _PROFILE_PATHS[service_type]) or []
        return [RouterProfile.from_api(service_type, row) for row in rows]

    # Queues, logs, and traffic ----------------------------------------------

    def list_queues(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/queue/simple") or []

    def create_queue(
        self,
        *,
        name: str,
        target: str,
        max_limit: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {"name": name, "target": target}
        if max_limit:
            payload["max-limit"] = max_limit
        if comment:
            payload["comment"] = comment
        return self._request("PUT", "/queue/simple", payload=payload) or {}

    def delete_queue(self, queue_id: str) -> None:
        self._request("DELETE", f"/queue/simple/{queue_id}")

    def get_logs(self, topics: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        params = {"topics": ",".join(topics)} if topics else None
        return self._request("GET", "/log", params=params) or []

    def get_interface_traffic(self, interface: Optional[str] = None) -> List[Dict[str, Any]]:
        if interface is None:
            return self._request("GET", "/interface") or []
        rows = self._request(
            "POST",
            "/interface/monitor-traffic",
            payload={"interface": interface, "once": "true"},
        )
        return rows or []

    def get_user_statistics(self, name: str) -> Dict[str, Any]:
        account = self.find_account(ServiceType.PPPOE, name)
        session = next(
            (item for item in self.list_active_sessions(ServiceType.PPPOE) if item.user == name),
            None,
        )
        queue = next((item for item in self.list_queues() if name in str(item.get("name", ""))), None)
        return {"account": account, "active_session": session, "queue": queue}


__all__ = ["NetworkProvisioningClient", "RouterOSClient"]
