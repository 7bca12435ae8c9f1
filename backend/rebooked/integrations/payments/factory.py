from __future__ import annotations

import os

from rebooked.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from rebooked.integrations.payments.base import PaymentsProvider
from rebooked.integrations.payments.bobpay_provider import BobPayPaymentsProvider
from rebooked.integrations.payments.mock_provider import MockPaymentsProvider
from rebooked.integrations.payments.paystack_provider import PaystackPaymentsProvider


_REQUIRED_ENV = {
    "paystack": ("PAYSTACK_SECRET_KEY",),
    "bobpay": ("BOBPAY_API_URL", "BOBPAY_API_TOKEN", "BOBPAY_ACCOUNT_CODE", "BOBPAY_PASSPHRASE"),
}


def _missing(provider: str) -> list[str]:
    return [key for key in _REQUIRED_ENV.get(provider, ()) if not (os.getenv(key) or "").strip()]


def build_payments_provider(settings, *, provider: str | None = None) -> PaymentsProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    name = (provider or getattr(settings, "payments_provider", "mock") or "mock").strip().lower()

    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:payments")

    if name == "mock":
        return MockPaymentsProvider()

    if name not in _REQUIRED_ENV:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={name}")

    missing = _missing(name)
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")

    if name == "paystack":
        return PaystackPaymentsProvider(secret_key=os.getenv("PAYSTACK_SECRET_KEY", "").strip())
    return BobPayPaymentsProvider(
        api_url=os.getenv("BOBPAY_API_URL", "").strip(),
        api_token=os.getenv("BOBPAY_API_TOKEN", "").strip(),
        account_code=os.getenv("BOBPAY_ACCOUNT_CODE", "").strip(),
        passphrase=os.getenv("BOBPAY_PASSPHRASE", "").strip(),
    )


def payment_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "payments_provider", "mock") or "mock").strip().lower()
    missing = _missing(provider) if mode != "disabled" else []
    if mode == "disabled":
        status = "disabled"
    elif missing or (provider != "mock" and provider not in _REQUIRED_ENV):
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
