"""Pickup and delivery location lookup for an order.

Each party location is found by walking an ordered list of strategies. The
first one that yields a result wins; a strategy that errors is logged and
skipped. Exhausting the list raises MissingPickupInfo / MissingDeliveryInfo.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from flask import current_app

from rebooked.extensions import db
from rebooked.models import Order, User
from rebooked.services.address_vault import AddressVault
from rebooked.services.errors import MissingDeliveryInfo, MissingPickupInfo

DEFAULT_LOCKER_PROVIDER = "pargo"


@dataclass
class PhysicalAddress:
    street: str
    city: str
    province: str = ""
    postal_code: str = ""
    country: str = "ZA"
    local_area: str = ""
    phone: str = ""

    @classmethod
    def from_mapping(cls, data: dict | None) -> "PhysicalAddress | None":
        if not isinstance(data, dict):
            return None

        def pick(*keys) -> str:
            for key in keys:
                value = data.get(key)
                if value not in (None, ""):
                    return str(value).strip()
            return ""

        street = pick("street", "street_address", "streetAddress", "line1")
        local_area = pick("local_area", "suburb")
        city = pick("city") or local_area
        if not street and not city:
            return None
        return cls(
            street=street,
            city=city,
            province=pick("province", "zone", "state"),
            postal_code=pick("postal_code", "postalCode", "code", "zip"),
            country=pick("country") or "ZA",
            local_area=local_area or city,
            phone=pick("phone", "phone_number"),
        )

    def to_courier_block(self, *, company: str = "") -> dict:
        block = {
            "street_address": self.street,
            "local_area": self.local_area or self.city,
            "city": self.city or self.local_area,
            "zone": self.province or "ZA",
            "code": self.postal_code,
            "country": self.country or "ZA",
        }
        if company:
            block["company"] = company
        return block


@dataclass
class LockerDescriptor:
    location_id: str
    provider_slug: str
    locker_metadata: dict = field(default_factory=dict)


Strategy = Callable[[], "PhysicalAddress | LockerDescriptor | None"]


def _party_id(order: Order, role: str) -> str:
    return order.seller_id if role == "seller" else order.buyer_id


def _fulfilment_type(order: Order, purpose: str) -> str:
    value = order.pickup_type if purpose == "pickup" else order.delivery_type
    return (value or "door").strip().lower()


def _locker_from_order_columns(order: Order, purpose: str) -> LockerDescriptor | None:
    location_id = getattr(order, f"{purpose}_locker_location_id", None)
    slug = getattr(order, f"{purpose}_locker_provider_slug", None)
    if location_id and slug:
        return LockerDescriptor(str(location_id), str(slug), order.locker_data(purpose))
    return None


def _locker_from_order_cache(order: Order, purpose: str) -> LockerDescriptor | None:
    data = order.locker_data(purpose)
    location_id = data.get("id") or data.get("location_id")
    slug = data.get("provider_slug")
    if location_id and slug:
        return LockerDescriptor(str(location_id), str(slug), data)
    return None


def _locker_from_profile(user_id: str) -> LockerDescriptor | None:
    user = db.session.get(User, user_id) if user_id else None
    if user is None or not user.preferred_delivery_locker_location_id:
        return None
    return LockerDescriptor(
        str(user.preferred_delivery_locker_location_id),
        user.preferred_delivery_locker_provider_slug or DEFAULT_LOCKER_PROVIDER,
        user.preferred_locker_data(),
    )


def _vault_address(vault: AddressVault, table: str, row_id: str | None, purpose: str) -> PhysicalAddress | None:
    if not row_id:
        return None
    return PhysicalAddress.from_mapping(vault.decrypt(table, row_id, purpose))


def locker_strategies(order: Order, role: str, purpose: str) -> list[tuple[str, Strategy]]:
    return [
        ("order_columns", lambda: _locker_from_order_columns(order, purpose)),
        ("order_locker_data", lambda: _locker_from_order_cache(order, purpose)),
        ("profile_preferred_locker", lambda: _locker_from_profile(_party_id(order, role))),
    ]


def door_strategies(order: Order, role: str, purpose: str, vault: AddressVault) -> list[tuple[str, Strategy]]:
    party = _party_id(order, role)
    if purpose == "pickup":
        return [
            ("order_pickup", lambda: _vault_address(vault, "orders", order.id, "pickup")),
            ("book_pickup", lambda: _vault_address(vault, "books", order.book_id, "pickup")),
            ("profile_pickup", lambda: _vault_address(vault, "profiles", party, "pickup")),
        ]
    strategies = [
        ("order_delivery", lambda: _vault_address(vault, "orders", order.id, "delivery")),
        ("profile_shipping", lambda: _vault_address(vault, "profiles", party, "shipping")),
    ]
    if _fulfilment_type(order, "delivery") == "locker":
        # Lockers still want a street address on the waybill; the seller's is the best we have.
        strategies.append(
            ("seller_pickup_for_locker", lambda: _vault_address(vault, "profiles", order.seller_id, "pickup"))
        )
    return strategies


def _run(order: Order, strategies: list[tuple[str, Strategy]], *, label: str):
    for name, strategy in strategies:
        try:
            found = strategy()
        except Exception as e:
            current_app.logger.warning(
                "address_strategy_failed order_id=%s lookup=%s strategy=%s err=%s", order.id, label, name, e
            )
            continue
        if found is not None:
            current_app.logger.info("address_resolved order_id=%s lookup=%s strategy=%s", order.id, label, name)
            return found
    return None


def resolve_physical_address(role: str, order: Order, purpose: str, *, vault: AddressVault | None = None) -> PhysicalAddress | None:
    """Best available street address regardless of door/locker type. Never raises."""
    vault = vault or AddressVault()
    return _run(order, door_strategies(order, role, purpose, vault), label=f"{role}_{purpose}_street")


def resolve_address(
    role: str, order: Order, purpose: str, *, vault: AddressVault | None = None
) -> PhysicalAddress | LockerDescriptor:
    role = (role or "").strip().lower()
    purpose = (purpose or "").strip().lower()
    if _fulfilment_type(order, purpose) == "locker":
        strategies = locker_strategies(order, role, purpose)
    else:
        strategies = door_strategies(order, role, purpose, vault or AddressVault())

    found = _run(order, strategies, label=f"{role}_{purpose}")
    if found is not None:
        return found
    if purpose == "pickup":
        raise MissingPickupInfo()
    raise MissingDeliveryInfo()
