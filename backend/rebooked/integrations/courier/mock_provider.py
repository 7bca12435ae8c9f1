from __future__ import annotations

import hashlib
import os

from rebooked.integrations.common import IntegrationRequestError, IntegrationResult
from rebooked.integrations.courier.base import (
    CourierProvider,
    RateQuote,
    RateRequest,
    ShipmentRequest,
    ShipmentResult,
)

# (provider_slug, service_level_code, name, cents, days)
MOCK_RATES = (
    ("courier-x", "std", "Standard", 9500, 3),
    ("courier-x", "express", "Express", 15000, 1),
    ("pargo", "locker", "Pickup point", 6500, 4),
)


class MockCourierProvider(CourierProvider):
    name = "mock"

    def __init__(self):
        self.created: list[ShipmentRequest] = []
        self.cancelled: list[dict] = []
        self.quoted: list[RateRequest] = []

    def get_rates(self, request: RateRequest) -> list[RateQuote]:
        if (os.getenv("MOCK_COURIER_FORCE_FAIL") or "").strip() == "1":
            raise IntegrationRequestError("MOCK_COURIER_DOWN", "mock forced failure")
        self.quoted.append(request)
        return [
            RateQuote(provider_slug=slug, service_level_code=code, service_name=label, amount_minor=cents, transit_days=days)
            for slug, code, label, cents, days in MOCK_RATES
        ]

    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        if (os.getenv("MOCK_COURIER_FORCE_FAIL") or "").strip() == "1":
            raise IntegrationRequestError("MOCK_COURIER_DOWN", "mock forced failure")
        self.created.append(request)
        digest = hashlib.sha1(f"{request.order_id}:{len(self.created)}".encode("utf-8")).hexdigest()[:10].upper()
        return ShipmentResult(
            shipment_id=f"mock-sh-{digest}",
            tracking_number=f"MOCK{digest}",
            waybill_url=f"https://example.com/mock/waybill/{digest}.pdf",
            raw={"provider_slug": request.provider_slug},
        )

    def cancel_shipment(self, *, shipment_id: str = "", tracking_number: str = "", reason: str = "") -> IntegrationResult:
        self.cancelled.append({"shipment_id": shipment_id, "tracking_number": tracking_number, "reason": reason})
        return IntegrationResult(ok=True, code="OK", message="mock_cancelled")

    def verify_webhook(self, *, raw_body: bytes, headers) -> bool:
        return True
