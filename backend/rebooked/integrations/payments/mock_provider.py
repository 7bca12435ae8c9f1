from __future__ import annotations

import os

from rebooked.integrations.common import IntegrationRequestError, IntegrationResult
from rebooked.integrations.payments.base import (
    CallbackUrls,
    PaymentInitializeResult,
    PaymentVerifyResult,
    PaymentWebhookEvent,
    PaymentsProvider,
)


class MockPaymentsProvider(PaymentsProvider):
    name = "mock"

    def __init__(self):
        self.refunds: list[dict] = []

    def _force_failure(self, marker: str = "") -> bool:
        return "[fail]" in (marker or "").lower() or (os.getenv("MOCK_PAYMENTS_FORCE_FAIL") or "").strip() == "1"

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
        if self._force_failure(item_name):
            raise IntegrationRequestError("MOCK_INIT_FAILED", "mock forced failure")
        url = f"https://example.com/mock/pay?reference={reference}&order_id={order_id}"
        return PaymentInitializeResult(
            authorization_url=url,
            reference=reference,
            provider=self.name,
            access_code=f"mock_{reference}",
            raw={"order_id": order_id, "amount_minor": amount_minor, "email": email, "metadata": metadata or {}},
        )

    def verify(self, reference: str) -> PaymentVerifyResult:
        return PaymentVerifyResult(
            status="success",
            amount_minor=0,
            currency="ZAR",
            customer="mock",
            raw={"reference": reference, "provider": self.name},
        )

    def refund(self, *, reference: str, amount_minor: int, reason: str = "") -> IntegrationResult:
        if self._force_failure(reason):
            return IntegrationResult(ok=False, code="MOCK_REFUND_FAILED", message="mock forced failure")
        self.refunds.append({"reference": reference, "amount_minor": int(amount_minor), "reason": reason})
        return IntegrationResult(ok=True, code="OK", message="mock_refunded", raw={"reference": reference})

    def verify_webhook(self, *, raw_body: bytes, headers, payload: dict) -> bool:
        return True

    def parse_webhook(self, payload: dict) -> PaymentWebhookEvent | None:
        reference = str(payload.get("reference") or "").strip()
        if not reference:
            return None
        return PaymentWebhookEvent(
            event_id=f"mock:{reference}:{payload.get('status') or 'success'}",
            reference=reference,
            status=str(payload.get("status") or "success").strip().lower(),
            amount_minor=int(payload.get("amount_minor") or 0),
            raw=payload,
        )
