import pytest
from fastapi import HTTPException

from ispbill.app.config import load_billing_config, load_db_config
from ispbill.app.errors import ConnectivityError, InputValidationError, NotFoundError
from ispbill.app.payments import GatewayConnectionError
from ispbill.app.provisioning import RouterConnectionError, RouterRequestError


def test_billing_config_defaults():
    config = load_billing_config({})

    assert config.gateway_name == "sandbox"
    assert config.xendit_api_key is None
    assert config.currency == "IDR"
    assert config.invoice_duration_seconds == 86400
    assert config.app_base_url == "http://localhost:3000"
    assert config.router_default_profile == "default"
    assert config.provisioning_max_attempts == 5
    assert config.provisioning_retry_backoff_seconds == 60.0
    assert config.pending_checkout_ttl_minutes == 1440
    assert config.maintenance_scheduler_enabled is False


def test_billing_config_reads_environment():
    config = load_billing_config(
        {
            "PAYMENT_GATEWAY": " Xendit ",
            "XENDIT_API_KEY": "xnd_live_key",
            "XENDIT_CALLBACK_TOKEN": "callback-secret",
            "XENDIT_BASE_URL": "https://api.xendit.test/",
            "BILLING_CURRENCY": "php",
            "APP_BASE_URL": "https://isp.example/",
            "ROUTER_VERIFY_TLS": "off",
            "PROVISIONING_MAX_ATTEMPTS": "0",
            "MAINTENANCE_SCHEDULER_ENABLED": "yes",
            "MAINTENANCE_INTERVAL_SECONDS": "1",
        }
    )

    assert config.gateway_name == "xendit"
    assert config.xendit_callback_token == "callback-secret"
    assert config.xendit_base_url == "https://api.xendit.test"
    assert config.currency == "PHP"
    assert config.app_base_url == "https://isp.example"
    assert config.router_verify_tls is False
    assert config.provisioning_max_attempts == 1
    assert config.maintenance_scheduler_enabled is True
    assert config.maintenance_interval_seconds == 5.0


def test_xendit_requires_api_key():
    with pytest.raises(ValueError, match="XENDIT_API_KEY"):
        load_billing_config({"PAYMENT_GATEWAY": "xendit"})


def test_malformed_number_is_rejected():
    with pytest.raises(ValueError, match="integer"):
        load_billing_config({"PROVISIONING_MAX_ATTEMPTS": "many"})


def test_db_config_defaults_and_overrides():
    assert load_db_config({}) == {
        "host": "127.0.0.1",
        "port": 5432,
        "dbname": "ispbill",
        "user": "ispbill",
        "password": "ispbill",
        "connect_timeout": 5,
    }

    cfg = load_db_config({"DB_HOST": "db", "DB_PORT": "6543", "DB_CONNECT_TIMEOUT": "2.5"})
    assert cfg["host"] == "db"
    assert cfg["port"] == 6543
    assert cfg["connect_timeout"] == 3


@pytest.mark.parametrize("raw", ["soon", "-1"])
def test_db_config_rejects_bad_timeout(raw):
    with pytest.raises(ValueError, match="DB_CONNECT_TIMEOUT"):
        load_db_config({"DB_CONNECT_TIMEOUT": raw})


def test_service_error_converts_to_http_exception():
    error = NotFoundError(message="Transaction not found", detail={"invoice_id": "inv-404"})

    http_error = error.to_http_exception()

    assert isinstance(http_error, HTTPException)
    assert http_error.status_code == 404
    assert http_error.detail == {"error": "not_found", "message": "Transaction not found", "invoice_id": "inv-404"}


def test_error_kinds_are_distinguishable():
    assert InputValidationError(message="bad").status_code == 400
    assert isinstance(RouterConnectionError(message="down"), ConnectivityError)
    assert isinstance(GatewayConnectionError(message="down"), ConnectivityError)
    assert not isinstance(RouterRequestError(message="rejected"), ConnectivityError)
    assert str(RouterRequestError(message="rejected")) == "rejected"
