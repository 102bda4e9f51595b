"""API schemas for router configuration and monitoring endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..provisioning import ActiveSession, RouterAccount, RouterConfig


class RouterConfigRequest(BaseModel):
    name: str = Field(min_length=1)
    host: str = Field(min_length=1)
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    use_ssl: bool = Field(alias="useSsl", default=True)

    model_config = ConfigDict(populate_by_name=True)

    def to_config(self) -> RouterConfig:
        return RouterConfig(
            name=self.name,
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            use_ssl=self.use_ssl,
            is_active=True,
        )


class RouterConfigOut(BaseModel):
    """Router settings as shown to admins; the password is never echoed."""

    id: Optional[int] = None
    name: str
    host: str
    port: Optional[int] = None
    username: str
    use_ssl: bool = Field(alias="useSsl")
    is_active: bool = Field(alias="isActive")
    updated_at: Optional[datetime] = Field(alias="updatedAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_config(cls, config: RouterConfig) -> "RouterConfigOut":
        return cls(
            id=config.config_id,
            name=config.name,
            host=config.host,
            port=config.port,
            username=config.username,
            use_ssl=config.use_ssl,
            is_active=config.is_active,
            updated_at=config.updated_at,
        )


class RouterConfigListResponse(BaseModel):
    configs: List[RouterConfigOut]


class RouterStatusResponse(BaseModel):
    configured: bool
    connected: bool
    router: Optional[RouterConfigOut] = None
    message: Optional[str] = None


class RouterAccountsResponse(BaseModel):
    type: str
    accounts: List[RouterAccount] = Field(default_factory=list)
    sessions: List[ActiveSession] = Field(default_factory=list)
    count: int = 0
