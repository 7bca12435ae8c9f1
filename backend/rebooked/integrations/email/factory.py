from __future__ import annotations

import os

from rebooked.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from rebooked.integrations.email.base import EmailProvider
from rebooked.integrations.email.mock_provider import MockEmailProvider
from rebooked.integrations.email.smtp_provider import SmtpEmailProvider


def build_email_provider(settings) -> EmailProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "email_provider", "mock") or "mock").strip().lower()

    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:email")

    if provider == "mock":
        return MockEmailProvider()

    if provider != "smtp":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:email_provider={provider}")

    host = (os.getenv("SMTP_HOST") or "").strip()
    if not host:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing SMTP_HOST")
    try:
        port = int((os.getenv("SMTP_PORT") or "587").strip() or 587)
    except ValueError:
        port = 587
    user = (os.getenv("SMTP_USER") or "").strip()
    return SmtpEmailProvider(
        host=host,
        port=port,
        user=user,
        password=(os.getenv("SMTP_PASSWORD") or "").strip(),
        sender=(os.getenv("SMTP_FROM") or user).strip(),
        reply_to=(os.getenv("SMTP_REPLY_TO") or "").strip(),
    )
