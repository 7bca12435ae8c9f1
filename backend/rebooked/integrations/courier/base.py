from __future__ import annotations

from dataclasses import dataclass, field

from rebooked.integrations.common import IntegrationResult

DEFAULT_PARCEL_VALUE = 100


@dataclass
class Parcel:
    description: str
    value: float
    weight: float = 1
    length: float = 25
    width: float = 20
    height: float = 3

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "weight": self.weight,
            "length": self.length,
            "width": self.width,
            "height": self.height,
            "value": self.value,
        }


@dataclass
class Contact:
    name: str
    phone: str
    email: str


@dataclass
class ShipmentEndpoint:
    """One side of a shipment: either a locker id or a street address block."""

    contact: Contact
    address: dict | None = None
    locker_location_id: str = ""
    locker_provider_slug: str = ""
    locker_data: dict = field(default_factory=dict)

    @property
    def is_locker(self) -> bool:
        return bool(self.locker_location_id)


@dataclass
class ShipmentRequest:
    order_id: str
    provider_slug: str
    service_level_code: str
    parcels: list[Parcel]
    pickup: ShipmentEndpoint
    delivery: ShipmentEndpoint
    reference: str = ""

    def to_payload(self) -> dict:
        payload = {
            "order_id": self.order_id,
            "provider_slug": self.provider_slug,
            "service_level_code": self.service_level_code,
            "parcels": [p.to_dict() for p in self.parcels],
            "reference": self.reference or f"ORDER-{self.order_id}",
        }
        for side, endpoint in (("pickup", self.pickup), ("delivery", self.delivery)):
            if endpoint.is_locker:
                payload[f"{side}_locker_location_id"] = endpoint.locker_location_id
                payload[f"{side}_locker_provider_slug"] = endpoint.locker_provider_slug
                payload[f"{side}_locker_data"] = endpoint.locker_data
            # Lockers carry the best known street address too, when there is one.
            if endpoint.address or not endpoint.is_locker:
                payload[f"{side}_address"] = dict(endpoint.address or {})
            payload[f"{side}_contact_name"] = endpoint.contact.name
            payload[f"{side}_contact_phone"] = endpoint.contact.phone
            payload[f"{side}_contact_email"] = endpoint.contact.email
        return payload


@dataclass
class RateRequest:
    """Quote input. Each side is a street block or a pickup point id."""

    parcels: list[Parcel]
    collection_address: dict | None = None
    delivery_address: dict | None = None
    collection_locker_id: str = ""
    delivery_locker_id: str = ""
    locker_provider_slug: str = ""

    @property
    def declared_value(self) -> float:
        return sum(float(p.value or 0) for p in self.parcels)


@dataclass
class RateQuote:
    provider_slug: str
    service_level_code: str
    service_name: str
    amount_minor: int
    transit_days: int | None = None
    raw: dict = field(default_factory=dict)

    def matches(self, provider_slug: str, service_level_code: str) -> bool:
        return (
            self.provider_slug.strip().lower() == (provider_slug or "").strip().lower()
            and self.service_level_code.strip().lower() == (service_level_code or "").strip().lower()
        )

    def to_dict(self) -> dict:
        return {
            "provider_slug": self.provider_slug,
            "service_level_code": self.service_level_code,
            "service_name": self.service_name,
            "amount_minor": int(self.amount_minor),
            "price": round(int(self.amount_minor) / 100.0, 2),
            "transit_days": self.transit_days,
        }


@dataclass
class ShipmentResult:
    shipment_id: str
    tracking_number: str = ""
    waybill_url: str = ""
    raw: dict | None = None


@dataclass
class TrackingUpdate:
    event_type: str
    tracking_number: str = ""
    shipment_id: str = ""
    status: str = ""
    raw: dict = field(default_factory=dict)


class CourierProvider:
    name = "unknown"

    def get_rates(self, request: RateRequest) -> list[RateQuote]:
        raise NotImplementedError

    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        raise NotImplementedError

    def cancel_shipment(self, *, shipment_id: str = "", tracking_number: str = "", reason: str = "") -> IntegrationResult:
        raise NotImplementedError

    def verify_webhook(self, *, raw_body: bytes, headers) -> bool:
        raise NotImplementedError

    def parse_webhook(self, payload: dict) -> TrackingUpdate:
        event_type = str(payload.get("event_type") or payload.get("type") or payload.get("event") or "unknown")
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        shipment = data.get("shipment") if isinstance(data.get("shipment"), dict) else {}
        return TrackingUpdate(
            event_type=event_type,
            tracking_number=str(
                data.get("tracking_reference") or data.get("tracking_number") or shipment.get("tracking_number") or ""
            ).strip(),
            shipment_id=str(data.get("shipment_id") or data.get("id") or "").strip(),
            status=str(data.get("status") or data.get("event_status") or "").strip(),
            raw=data,
        )
