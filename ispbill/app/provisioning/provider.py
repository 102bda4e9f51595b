"""Lazily resolved, invalidatable access to the active router client."""
from __future__ import annotations

import logging
from threading import Lock
from typing import Callable, Optional, Protocol

from .client import RouterOSClient
from .exceptions import RouterNotConfiguredError
from .models import RouterConfig

logger = logging.getLogger(__name__)


class ActiveRouterConfigSource(Protocol):
    def get_active_router_config(self) -> Optional[RouterConfig]:
        ...


ClientFactory = Callable[[RouterConfig], RouterOSClient]


class RouterClientProvider:
    """Holds the client for the active router configuration.

    The configuration is looked up on first use and cached until
    :meth:`invalidate` is called after an admin changes router settings.
    """

    def __init__(
        self,
        config_source: ActiveRouterConfigSource,
        *,
        client_factory: Optional[ClientFactory] = None,
        timeout: float = 10.0,
        verify: bool = True,
    ) -> None:
        self._config_source = config_source
        self._client_factory = client_factory or (
            lambda config: RouterOSClient(config, timeout=timeout, verify=verify)
        )
        self._lock = Lock()
        self._client: Optional[RouterOSClient] = None

    def get_client(self) -> RouterOSClient:
        with self._lock:
            if self._client is None:
                config = self._config_source.get_active_router_config()
                if config is None:
                    raise RouterNotConfiguredError(
                        message="No active router configuration found. Configure the router in the admin panel.",
                    )
                self._client = self._client_factory(config)
                logger.info(
                    "Router client resolved",
                    extra={"router": config.name, "host": config.host},
                )
            return self._client

    def invalidate(self) -> None:
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.close()
            logger.info("Router client cache invalidated", extra={"router": client.config.name})

    @property
    def is_resolved(self) -> bool:
        return self._client is not None


__all__ = ["ActiveRouterConfigSource", "RouterClientProvider"]
