from __future__ import annotations

import os

from rebooked.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from rebooked.integrations.courier.base import CourierProvider
from rebooked.integrations.courier.bobgo_provider import BobGoCourierProvider
from rebooked.integrations.courier.mock_provider import MockCourierProvider


def build_courier_provider(settings) -> CourierProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "courier_provider", "mock") or "mock").strip().lower()

    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:courier")

    if provider == "mock":
        return MockCourierProvider()

    if provider != "bobgo":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:courier_provider={provider}")

    api_key = (os.getenv("BOBGO_API_KEY") or "").strip()
    if not api_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing BOBGO_API_KEY")
    return BobGoCourierProvider(
        api_key=api_key,
        base_url=os.getenv("BOBGO_BASE_URL") or "",
        webhook_secret=(os.getenv("BOBGO_WEBHOOK_SECRET") or "").strip(),
    )


def courier_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "courier_provider", "mock") or "mock").strip().lower()
    missing = []
    if mode != "disabled" and provider == "bobgo":
        for key in ("BOBGO_API_KEY", "BOBGO_WEBHOOK_SECRET"):
            if not (os.getenv(key) or "").strip():
                missing.append(key)
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
