from __future__ import annotations

import hashlib
import hmac
from urllib.parse import quote

import requests

from rebooked.integrations.common import IntegrationRequestError, IntegrationResult, map_http_error, response_json
from rebooked.integrations.payments.base import (
    CallbackUrls,
    PaymentInitializeResult,
    PaymentVerifyResult,
    PaymentWebhookEvent,
    PaymentsProvider,
)
from rebooked.utils.money import money_major_to_minor, money_minor_to_major

# Order of fields in the notify signature string.
_SIGNATURE_FIELDS = (
    "recipient_account_code",
    "custom_payment_id",
    "email",
    "mobile_number",
    "amount",
    "item_name",
    "item_description",
    "notify_url",
    "success_url",
    "pending_url",
    "cancel_url",
)

_STATUS_MAP = {
    "paid": "success",
    "pending": "pending",
    "failed": "failed",
    "cancelled": "cancelled",
}


def _encode(value) -> str:
    # encodeURIComponent semantics
    return quote(str(value if value is not None else ""), safe="-_.!~*'()")


def bobpay_signature(payload: dict, passphrase: str) -> str:
    pairs = []
    for key in _SIGNATURE_FIELDS:
        if key == "amount":
            try:
                pairs.append(f"amount={float(payload.get('amount') or 0):.2f}")
            except (TypeError, ValueError):
                pairs.append("amount=0.00")
            continue
        pairs.append(f"{key}={_encode(payload.get(key))}")
    raw = "&".join(pairs) + f"&passphrase={passphrase}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


class BobPayPaymentsProvider(PaymentsProvider):
    """Redirect-style gateway: the browser is sent to a hosted payment link."""

    name = "bobpay"

    def __init__(self, *, api_url: str, api_token: str, account_code: str, passphrase: str = "", timeout: int = 25):
        self.api_url = api_url.rstrip("/")
        self.api_token = api_token
        self.account_code = account_code
        self.passphrase = passphrase
        self.timeout = timeout

    def _post(self, url: str, body: dict, *, code: str) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }
        try:
            r = requests.post(url, headers=headers, json=body, timeout=self.timeout)
        except requests.Timeout:
            raise IntegrationRequestError("PROVIDER_TIMEOUT", "bobpay timeout")
        except requests.RequestException as e:
            raise IntegrationRequestError("BOBPAY_PROVIDER_DOWN", str(e)[:200])
        j = response_json(r)
        if r.status_code < 200 or r.status_code >= 300:
            msg = str(j.get("message") or j.get("error") or f"HTTP {r.status_code}")
            if r.status_code in (401, 403, 429) or r.status_code >= 500:
                code = map_http_error("BOBPAY", r.status_code)
            raise IntegrationRequestError(code, msg[:200], status=r.status_code, raw=j)
        return j

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
        body = {
            "recipient_account_code": self.account_code,
            "custom_payment_id": reference,
            "email": email,
            "amount": float(money_minor_to_major(amount_minor)),
            "item_name": (item_name or f"Order {order_id}")[:120],
            "item_description": f"ReBooked order {order_id}",
            "notify_url": callback_urls.notify_url,
            "success_url": callback_urls.success_url,
            "pending_url": callback_urls.pending_url or callback_urls.success_url,
            "cancel_url": callback_urls.cancel_url,
            "short_url": True,
        }
        j = self._post(f"{self.api_url}/payments/intents/link", body, code="BOBPAY_INIT_FAILED")
        url = str(j.get("url") or j.get("short_url") or "").strip()
        if not url:
            raise IntegrationRequestError("BOBPAY_INIT_FAILED", "no payment url returned", raw=j)
        return PaymentInitializeResult(authorization_url=url, reference=reference, provider=self.name, raw=j)

    def verify(self, reference: str) -> PaymentVerifyResult:
        # Payment state arrives on the notify webhook; a client callback alone proves nothing.
        return PaymentVerifyResult(
            status="pending",
            amount_minor=0,
            currency="ZAR",
            customer="",
            raw={"reference": reference, "provider": self.name},
        )

    def refund(self, *, reference: str, amount_minor: int, reason: str = "") -> IntegrationResult:
        base = self.api_url[:-3] if self.api_url.endswith("/v2") else self.api_url
        try:
            j = self._post(f"{base}/v2/payments/reversal", {"custom_payment_id": reference}, code="BOBPAY_REFUND_FAILED")
        except IntegrationRequestError as e:
            return IntegrationResult(ok=False, code=e.code, message=e.message, raw=e.raw)
        return IntegrationResult(ok=True, code="OK", message="reversed", raw=j)

    def validate_notification(self, payload: dict) -> bool:
        try:
            self._post(f"{self.api_url}/payments/intents/validate", payload, code="BOBPAY_VALIDATION_FAILED")
        except IntegrationRequestError:
            return False
        return True

    def verify_webhook(self, *, raw_body: bytes, headers, payload: dict) -> bool:
        signature = str(payload.get("signature") or "").strip().lower()
        if not signature or not self.passphrase:
            return False
        expected = bobpay_signature(payload, self.passphrase)
        if not hmac.compare_digest(expected, signature):
            return False
        return self.validate_notification(payload)

    def parse_webhook(self, payload: dict) -> PaymentWebhookEvent | None:
        reference = str(payload.get("custom_payment_id") or "").strip()
        if not reference:
            return None
        raw_status = str(payload.get("status") or "").strip().lower()
        return PaymentWebhookEvent(
            event_id=f"bobpay:{payload.get('id') or reference}:{raw_status}",
            reference=reference,
            status=_STATUS_MAP.get(raw_status, "pending"),
            amount_minor=money_major_to_minor(payload.get("amount")),
            raw=payload,
        )
