"""Billing, payment gateway, and router configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
import math
import os
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for invoicing, webhook verification, and provisioning."""

    gateway_name: str
    xendit_api_key: Optional[str]
    xendit_base_url: str
    xendit_callback_token: Optional[str]
    currency: str
    invoice_duration_seconds: int
    app_base_url: str
    gateway_timeout_seconds: float
    router_timeout_seconds: float
    router_verify_tls: bool
    router_default_profile: str
    provisioning_max_attempts: int
    provisioning_retry_backoff_seconds: float
    pending_checkout_ttl_minutes: int
    maintenance_scheduler_enabled: bool
    maintenance_interval_seconds: float


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    gateway_name = (env_mapping.get("PAYMENT_GATEWAY") or "sandbox").strip().lower() or "sandbox"
    xendit_api_key = env_mapping.get("XENDIT_API_KEY") or None
    if gateway_name == "xendit" and not xendit_api_key:
        raise ValueError("XENDIT_API_KEY must be set when PAYMENT_GATEWAY=xendit")

    xendit_base_url = env_mapping.get("XENDIT_BASE_URL", "https://api.xendit.co")
    callback_token = env_mapping.get("XENDIT_CALLBACK_TOKEN") or None
    currency = (env_mapping.get("BILLING_CURRENCY") or "IDR").strip().upper()

    invoice_duration = max(60, _to_int(env_mapping.get("INVOICE_DURATION_SECONDS"), default=24 * 60 * 60))
    app_base_url = env_mapping.get("APP_BASE_URL", "http://localhost:3000")

    gateway_timeout = max(1.0, _to_float(env_mapping.get("GATEWAY_TIMEOUT_SECONDS"), default=30.0))
    router_timeout = max(1.0, _to_float(env_mapping.get("ROUTER_TIMEOUT_SECONDS"), default=10.0))
    router_verify_tls = _to_bool(env_mapping.get("ROUTER_VERIFY_TLS"), default=True)
    router_default_profile = env_mapping.get("ROUTER_DEFAULT_PROFILE") or "default"

    max_attempts = max(1, _to_int(env_mapping.get("PROVISIONING_MAX_ATTEMPTS"), default=5))
    backoff_seconds = max(0.0, _to_float(env_mapping.get("PROVISIONING_RETRY_BACKOFF_SECONDS"), default=60.0))
    checkout_ttl = max(1, _to_int(env_mapping.get("PENDING_CHECKOUT_TTL_MINUTES"), default=24 * 60))

    scheduler_enabled = _to_bool(env_mapping.get("MAINTENANCE_SCHEDULER_ENABLED"), default=False)
    maintenance_interval = max(5.0, _to_float(env_mapping.get("MAINTENANCE_INTERVAL_SECONDS"), default=300.0))

    return BillingConfig(
        gateway_name=gateway_name,
        xendit_api_key=xendit_api_key,
        xendit_base_url=xendit_base_url.rstrip("/"),
        xendit_callback_token=callback_token,
        currency=currency,
        invoice_duration_seconds=invoice_duration,
        app_base_url=app_base_url.rstrip("/"),
        gateway_timeout_seconds=gateway_timeout,
        router_timeout_seconds=router_timeout,
        router_verify_tls=router_verify_tls,
        router_default_profile=router_default_profile,
        provisioning_max_attempts=max_attempts,
        provisioning_retry_backoff_seconds=backoff_seconds,
        pending_checkout_ttl_minutes=checkout_ttl,
        maintenance_scheduler_enabled=scheduler_enabled,
        maintenance_interval_seconds=maintenance_interval,
    )


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def load_db_config(env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Keyword arguments for ``psycopg2.connect`` read from ``DB_*`` variables."""

    env_mapping = os.environ if env is None else env
    return dict(
        host=env_mapping.get("DB_HOST", "127.0.0.1"),
        port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        dbname=env_mapping.get("DB_NAME", "ispbill"),
        user=env_mapping.get("DB_USER", "ispbill"),
        password=env_mapping.get("DB_PASSWORD", "ispbill"),
        connect_timeout=_parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT", "5")),
    )


__all__ = ["BillingConfig", "load_billing_config", "load_db_config"]
