"""Admin-facing management of router configurations."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from ..errors import NotFoundError
from .models import RouterConfig
from .provider import RouterClientProvider

logger = logging.getLogger(__name__)


class RouterConfigRepository(Protocol):
    """Persistence operations required for router configuration."""

    def get_active_router_config(self) -> Optional[RouterConfig]:
        ...

    def list_router_configs(self) -> Sequence[RouterConfig]:
        ...

    def save_router_config(self, config: RouterConfig) -> RouterConfig:
        ...

    def delete_router_config(self, config_id: int) -> bool:
        ...


@dataclass
class RouterConfigService:
    """Keeps stored router settings and the cached client in step."""

    repository: RouterConfigRepository
    clients: RouterClientProvider

    def list_configs(self) -> Sequence[RouterConfig]:
        return self.repository.list_router_configs()

    def get_active_config(self) -> Optional[RouterConfig]:
        return self.repository.get_active_router_config()

    def save_config(self, config: RouterConfig) -> RouterConfig:
        saved = self.repository.save_router_config(config)
        self.clients.invalidate()
        logger.info(
            "Router configuration activated",
            extra={"router": saved.name, "host": saved.host, "config_id": saved.config_id},
        )
        return saved

    def delete_config(self, config_id: int) -> None:
        if not self.repository.delete_router_config(config_id):
            raise NotFoundError(message="Router configuration not found")
        self.clients.invalidate()
        logger.info("Router configuration deleted", extra={"config_id": config_id})

    def check_connection(self) -> bool:
        return self.clients.get_client().test_connection()


__all__ = ["RouterConfigRepository", "RouterConfigService"]
