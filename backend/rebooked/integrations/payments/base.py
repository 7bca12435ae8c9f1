from __future__ import annotations

from dataclasses import dataclass, field

from rebooked.integrations.common import IntegrationResult


@dataclass
class PaymentInitializeResult:
    authorization_url: str
    reference: str
    provider: str
    access_code: str = ""
    raw: dict | None = None


@dataclass
class PaymentVerifyResult:
    status: str  # success | pending | failed | cancelled
    amount_minor: int
    currency: str
    customer: str
    raw: dict | None = None


@dataclass
class PaymentWebhookEvent:
    event_id: str
    reference: str
    status: str
    amount_minor: int
    raw: dict = field(default_factory=dict)


@dataclass
class CallbackUrls:
    success_url: str
    cancel_url: str
    notify_url: str
    pending_url: str = ""


class PaymentsProvider:
    """One gateway. Checkout talks only to this interface."""

    name = "unknown"

    def initialize(
        self,
        *,
        order_id: str,
        amount_minor: int,
        email: str,
        reference: str,
        callback_urls: CallbackUrls,
        item_name: str = "",
        metadata: dict | None = None,
    ) -> PaymentInitializeResult:
        raise NotImplementedError

    def verify(self, reference: str) -> PaymentVerifyResult:
        raise NotImplementedError

    def refund(self, *, reference: str, amount_minor: int, reason: str = "") -> IntegrationResult:
        raise NotImplementedError

    def verify_webhook(self, *, raw_body: bytes, headers, payload: dict) -> bool:
        raise NotImplementedError

    def parse_webhook(self, payload: dict) -> PaymentWebhookEvent | None:
        raise NotImplementedError
