from __future__ import annotations

import hashlib
import hmac

import requests

from rebooked.integrations.common import IntegrationRequestError, IntegrationResult, map_http_error, response_json
from rebooked.integrations.payments.base import (
    CallbackUrls,
    PaymentInitializeResult,
    PaymentVerifyResult,
    PaymentWebhookEvent,
    PaymentsProvider,
)

PAYSTACK_BASE = "https://api.paystack.co"

_STATUS_MAP = {
    "success": "success",
    "failed": "failed",
    "abandoned": "cancelled",
    "reversed": "cancelled",
}


class PaystackPaymentsProvider(PaymentsProvider):
    """Popup-style gateway: the client opens the widget with `access_code`."""

    name = "paystack"

    def __init__(self, secret_key: str, *, timeout: int = 25):
        self.secret_key = secret_key
        self.timeout = timeout

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _call(self, method: str, path: str, *, code: str, json_body: dict | None = None) -> dict:
        try:
            r = requests.request(method, f"{PAYSTACK_BASE}{path}", headers=self._headers(), json=json_body, timeout=self.timeout)
        except requests.Timeout:
            raise IntegrationRequestError("PROVIDER_TIMEOUT", "paystack timeout")
        except requests.RequestException as e:
            raise IntegrationRequestError("PAYSTACK_PROVIDER_DOWN", str(e)[:200])
        j = response_json(r)
        if r.status_code < 200 or r.status_code >= 300 or j.get("status") is not True:
            msg = str(j.get("message") or f"HTTP {r.status_code}").strip()
            if r.status_code in (401, 403, 429) or r.status_code >= 500:
                code = map_http_error("PAYSTACK", r.status_code)
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
        payload = {
            "email": email,
            "amount": int(amount_minor),
            "currency": "ZAR",
            "reference": reference,
            "callback_url": callback_urls.success_url,
            "metadata": dict(metadata or {}, order_id=order_id, cancel_action=callback_urls.cancel_url),
        }
        j = self._call("POST", "/transaction/initialize", code="PAYSTACK_INIT_FAILED", json_body=payload)
        data = j.get("data") or {}
        return PaymentInitializeResult(
            authorization_url=(data.get("authorization_url") or "").strip(),
            reference=(data.get("reference") or reference).strip(),
            provider=self.name,
            access_code=(data.get("access_code") or "").strip(),
            raw=j,
        )

    def verify(self, reference: str) -> PaymentVerifyResult:
        ref = (reference or "").strip()
        j = self._call("GET", f"/transaction/verify/{ref}", code="PAYSTACK_VERIFY_FAILED")
        data = j.get("data") or {}
        try:
            amount_minor = int(data.get("amount") or 0)
        except Exception:
            amount_minor = 0
        raw_status = (data.get("status") or "").strip().lower()
        return PaymentVerifyResult(
            status=_STATUS_MAP.get(raw_status, "pending"),
            amount_minor=amount_minor,
            currency=(data.get("currency") or "ZAR").strip().upper(),
            customer=((data.get("customer") or {}).get("email") or "").strip(),
            raw=j,
        )

    def refund(self, *, reference: str, amount_minor: int, reason: str = "") -> IntegrationResult:
        payload = {"transaction": reference, "amount": int(amount_minor), "merchant_note": (reason or "")[:200]}
        try:
            j = self._call("POST", "/refund", code="PAYSTACK_REFUND_FAILED", json_body=payload)
        except IntegrationRequestError as e:
            return IntegrationResult(ok=False, code=e.code, message=e.message, raw=e.raw)
        return IntegrationResult(ok=True, code="OK", message="refund_queued", raw=j)

    def verify_webhook(self, *, raw_body: bytes, headers, payload: dict) -> bool:
        signature = (headers.get("X-Paystack-Signature") or "").strip()
        if not signature:
            return False
        expected = hmac.new(self.secret_key.encode("utf-8"), raw_body or b"", hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)

    def parse_webhook(self, payload: dict) -> PaymentWebhookEvent | None:
        event = str(payload.get("event") or "").strip()
        data = payload.get("data") or {}
        reference = str(data.get("reference") or "").strip()
        if not reference or not event.startswith("charge."):
            return None
        status = "success" if event == "charge.success" else _STATUS_MAP.get(str(data.get("status") or "").lower(), "failed")
        return PaymentWebhookEvent(
            event_id=f"paystack:{data.get('id') or reference}:{event}",
            reference=reference,
            status=status,
            amount_minor=int(data.get("amount") or 0),
            raw=payload,
        )
