"""Application wiring for the billing, payment, and provisioning services."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..billing import ReconciliationService, SubscriptionService
from ..billing.repository import PostgresBillingRepository
from ..config import BillingConfig, load_billing_config
from ..payments import PaymentGateway, create_payment_gateway
from ..provisioning import RouterClientProvider, RouterConfigService
from ..provisioning.repository import PostgresRouterConfigRepository

logger = logging.getLogger("billing")


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    config = get_billing_config()
    gateway = create_payment_gateway(config)
    logger.info("Payment gateway configured: %s", gateway.name)
    return gateway


@lru_cache(maxsize=1)
def get_router_client_provider() -> RouterClientProvider:
    config = get_billing_config()
    return RouterClientProvider(
        PostgresRouterConfigRepository(),
        timeout=config.router_timeout_seconds,
        verify=config.router_verify_tls,
    )


@lru_cache(maxsize=1)
def get_router_config_service() -> RouterConfigService:
    return RouterConfigService(
        repository=PostgresRouterConfigRepository(),
        clients=get_router_client_provider(),
    )


@lru_cache(maxsize=1)
def get_subscription_service() -> SubscriptionService:
    config = get_billing_config()
    return SubscriptionService(
        repository=PostgresBillingRepository(),
        gateway=get_payment_gateway(),
        currency=config.currency,
        invoice_duration_seconds=config.invoice_duration_seconds,
        app_base_url=config.app_base_url,
        pending_checkout_ttl_minutes=config.pending_checkout_ttl_minutes,
    )


@lru_cache(maxsize=1)
def get_reconciliation_service() -> ReconciliationService:
    config = get_billing_config()
    return ReconciliationService(
        repository=PostgresBillingRepository(),
        gateway=get_payment_gateway(),
        clients=get_router_client_provider(),
        default_profile=config.router_default_profile,
        max_attempts=config.provisioning_max_attempts,
        retry_backoff_seconds=config.provisioning_retry_backoff_seconds,
    )


__all__ = [
    "get_billing_config",
    "get_payment_gateway",
    "get_reconciliation_service",
    "get_router_client_provider",
    "get_router_config_service",
    "get_subscription_service",
]
