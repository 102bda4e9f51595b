"""Network access router integration: client, cached provider, and config service."""

from .client import NetworkProvisioningClient, RouterOSClient
from .exceptions import (
    RouterAuthenticationError,
    RouterConnectionError,
    RouterError,
    RouterNotConfiguredError,
    RouterRequestError,
)
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
from .provider import ActiveRouterConfigSource, RouterClientProvider
from .service import RouterConfigRepository, RouterConfigService

__all__ = [
    "AccountRequest",
    "AccountSyncReport",
    "ActiveRouterConfigSource",
    "ActiveSession",
    "NetworkProvisioningClient",
    "ProvisioningOutcome",
    "ProvisioningResult",
    "RouterAccount",
    "RouterAuthenticationError",
    "RouterClientProvider",
    "RouterConfig",
    "RouterConfigRepository",
    "RouterConfigService",
    "RouterConnectionError",
    "RouterError",
    "RouterNotConfiguredError",
    "RouterOSClient",
    "RouterProfile",
    "RouterRequestError",
    "ServiceType",
]
