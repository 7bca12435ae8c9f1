from __future__ import annotations

import hashlib
import hmac

import requests

from rebooked.integrations.common import IntegrationRequestError, IntegrationResult, map_http_error, response_json
from rebooked.integrations.courier.base import (
    CourierProvider,
    RateQuote,
    RateRequest,
    ShipmentRequest,
    ShipmentResult,
)
from rebooked.utils.money import money_major_to_minor

BOBGO_DEFAULT_BASE = "https://api.bobgo.co.za/v2"


def resolve_base_url(raw: str) -> str:
    env = (raw or "").strip().rstrip("/")
    if not env:
        return BOBGO_DEFAULT_BASE
    if "sandbox.bobgo.co.za" in env and "api.sandbox.bobgo.co.za" not in env:
        return "https://api.sandbox.bobgo.co.za/v2"
    if "bobgo.co.za" in env and not env.endswith("/v2"):
        return env + "/v2"
    return env


def format_address(addr: dict) -> dict:
    street = str(addr.get("street_address") or addr.get("street") or "").strip()
    local_area = str(addr.get("local_area") or addr.get("suburb") or "").strip()
    city = str(addr.get("city") or "").strip()
    province = str(addr.get("zone") or addr.get("province") or "").strip()
    country = str(addr.get("country") or "").strip()
    formatted = {
        "street_address": street,
        "local_area": local_area or city,
        "city": city or local_area,
        "zone": province.upper()[:3] if province else "ZA",
        "code": str(addr.get("code") or addr.get("postal_code") or "").strip(),
        "country": country if country and country.upper() != "SOUTH AFRICA" else "ZA",
    }
    company = str(addr.get("company") or "").strip()
    if company:
        formatted["company"] = company
    return formatted


class BobGoCourierProvider(CourierProvider):
    name = "bobgo"

    def __init__(self, *, api_key: str, base_url: str = "", webhook_secret: str = "", timeout: int = 30):
        self.api_key = api_key
        self.base_url = resolve_base_url(base_url)
        self.webhook_secret = webhook_secret
        self.timeout = timeout

    def _post(self, path: str, body: dict, *, code: str) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            r = requests.post(f"{self.base_url}{path}", headers=headers, json=body, timeout=self.timeout)
        except requests.Timeout:
            raise IntegrationRequestError("PROVIDER_TIMEOUT", "bobgo timeout")
        except requests.RequestException as e:
            raise IntegrationRequestError("BOBGO_PROVIDER_DOWN", str(e)[:200])
        j = response_json(r)
        if r.status_code < 200 or r.status_code >= 300:
            msg = str(j.get("message") or j.get("error") or f"HTTP {r.status_code}")
            if r.status_code in (401, 403, 429) or r.status_code >= 500:
                code = map_http_error("BOBGO", r.status_code)
            raise IntegrationRequestError(code, msg[:300], status=r.status_code, raw=j)
        return j

    def build_payload(self, request: ShipmentRequest) -> dict:
        payload = {
            "parcels": [
                {
                    "description": p.description or "Book",
                    "submitted_length_cm": p.length,
                    "submitted_width_cm": p.width,
                    "submitted_height_cm": p.height,
                    "submitted_weight_kg": p.weight,
                    "custom_parcel_reference": "",
                }
                for p in request.parcels
            ],
            "service_level_code": request.service_level_code,
            "provider_slug": request.provider_slug,
            "declared_value": sum(float(p.value or 0) for p in request.parcels),
            "timeout": 20000,
            "custom_tracking_reference": request.reference or f"ORDER-{request.order_id}",
        }
        for side, prefix, locker_key in (
            (request.pickup, "collection", "collection_pickup_point_location_id"),
            (request.delivery, "delivery", "delivery_pickup_point_location_id"),
        ):
            if side.is_locker:
                payload[locker_key] = side.locker_location_id
            else:
                formatted = format_address(side.address or {})
                if not formatted["street_address"] and not formatted["local_area"]:
                    raise IntegrationRequestError("BOBGO_REJECTED", f"{prefix} address needs street_address or local_area")
                payload[f"{prefix}_address"] = formatted
            payload[f"{prefix}_contact_name"] = side.contact.name.strip()
            payload[f"{prefix}_contact_mobile_number"] = side.contact.phone.strip()
            payload[f"{prefix}_contact_email"] = side.contact.email.strip()
        return payload

    def build_rates_payload(self, request: RateRequest) -> dict:
        payload = {
            "parcels": [
                {
                    "description": p.description or "Book",
                    "submitted_length_cm": p.length,
                    "submitted_width_cm": p.width,
                    "submitted_height_cm": p.height,
                    "submitted_weight_kg": p.weight,
                    "custom_parcel_reference": "",
                }
                for p in request.parcels
            ],
            "declared_value": request.declared_value,
            "timeout": 10000,
        }
        for prefix, address, locker_id in (
            ("collection", request.collection_address, request.collection_locker_id),
            ("delivery", request.delivery_address, request.delivery_locker_id),
        ):
            if locker_id:
                payload[f"{prefix}_pickup_point_location_id"] = locker_id
                payload.setdefault("pickup_point_provider_slug", request.locker_provider_slug)
            elif address:
                payload[f"{prefix}_address"] = format_address(address)
            else:
                raise IntegrationRequestError("BOBGO_REJECTED", f"{prefix} address or pickup point is required")
        return payload

    def get_rates(self, request: RateRequest) -> list[RateQuote]:
        if not request.parcels:
            raise IntegrationRequestError("BOBGO_REJECTED", "parcels are required")
        j = self._post("/rates", self.build_rates_payload(request), code="BOBGO_RATES_FAILED")
        quotes = []
        for provider_req in j.get("provider_rate_requests") or []:
            slug = str(provider_req.get("provider_slug") or "").strip()
            for rate in provider_req.get("responses") or []:
                level = rate.get("service_level") if isinstance(rate.get("service_level"), dict) else {}
                code = str(rate.get("service_level_code") or level.get("code") or "").strip()
                if not slug or not code:
                    continue
                days = level.get("service_level_days")
                quotes.append(
                    RateQuote(
                        provider_slug=slug,
                        service_level_code=code,
                        service_name=str(level.get("name") or provider_req.get("provider_name") or code),
                        amount_minor=money_major_to_minor(rate.get("rate_amount")),
                        transit_days=int(days) if isinstance(days, (int, float)) else None,
                        raw=rate,
                    )
                )
        return quotes

    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        if not request.parcels:
            raise IntegrationRequestError("BOBGO_REJECTED", "parcels are required")
        j = self._post("/shipments", self.build_payload(request), code="BOBGO_CREATE_FAILED")
        shipment_id = str(j.get("id") or "").strip()
        if not shipment_id:
            raise IntegrationRequestError("BOBGO_CREATE_FAILED", "no shipment id returned", raw=j)
        return ShipmentResult(
            shipment_id=shipment_id,
            tracking_number=str(j.get("tracking_reference") or "").strip(),
            waybill_url=str(j.get("waybill_url") or "").strip(),
            raw=j,
        )

    def cancel_shipment(self, *, shipment_id: str = "", tracking_number: str = "", reason: str = "") -> IntegrationResult:
        identifier = (tracking_number or shipment_id or "").strip()
        if not identifier:
            return IntegrationResult(ok=False, code="BOBGO_REJECTED", message="no shipment identifier")
        try:
            j = self._post(
                "/shipments/cancel",
                {"tracking_reference": identifier, "cancellation_reason": reason or "Cancelled by merchant"},
                code="BOBGO_CANCEL_FAILED",
            )
        except IntegrationRequestError as e:
            return IntegrationResult(ok=False, code=e.code, message=e.message, raw=e.raw)
        return IntegrationResult(ok=True, code="OK", message="cancelled", raw=j)

    def verify_webhook(self, *, raw_body: bytes, headers) -> bool:
        if not self.webhook_secret:
            return False
        signature = (headers.get("X-Bobgo-Signature") or headers.get("X-Signature") or "").strip().lower()
        if not signature:
            return False
        expected = hmac.new(self.webhook_secret.encode("utf-8"), raw_body or b"", hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)
