"""Seller commitment: claim the order, book the courier, then persist.

The order only reaches ``committed`` after the courier hands back a shipment
id. If that last write fails the shipment is cancelled again so no orphaned
booking is left behind.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError

from rebooked.extensions import db
from rebooked.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    IntegrationRequestError,
)
from rebooked.integrations.courier.base import (
    DEFAULT_PARCEL_VALUE,
    Contact,
    CourierProvider,
    Parcel,
    ShipmentEndpoint,
    ShipmentRequest,
    ShipmentResult,
)
from rebooked.integrations.courier.factory import build_courier_provider
from rebooked.models import Order
from rebooked.models.json_columns import dump_json
from rebooked.models.order import COMMITTABLE_STATUSES
from rebooked.services.address_resolution import (
    LockerDescriptor,
    PhysicalAddress,
    resolve_address,
    resolve_physical_address,
)
from rebooked.services.address_vault import AddressVault
from rebooked.services.errors import (
    CommitInProgress,
    InvalidState,
    NoCourierSelected,
    OrderNotFound,
    PersistenceFailed,
    ShipmentCreationFailed,
    Unauthorized,
)
from rebooked.services.notification_service import OrderNotifier
from rebooked.utils.events import log_event
from rebooked.utils.observability import bind_log_context
from rebooked.utils.settings import config_int, get_settings


@dataclass
class CommitResult:
    tracking_number: str
    waybill_url: str
    pickup_type: str
    delivery_type: str
    shipment_id: str = ""

    def to_dict(self) -> dict:
        return {
            "success": True,
            "tracking_number": self.tracking_number,
            "waybill_url": self.waybill_url,
            "pickup_type": self.pickup_type,
            "delivery_type": self.delivery_type,
        }


def _load_order(order_id: str) -> Order:
    order = db.session.get(Order, order_id) if order_id else None
    if order is None:
        raise OrderNotFound()
    return order


def _check_preconditions(order: Order, actor_id: str) -> None:
    if not actor_id or str(actor_id) != str(order.seller_id):
        raise Unauthorized("Only the seller can commit to this order")
    if not order.is_committable:
        raise InvalidState(f"Order cannot be committed while {order.status}")
    if not (order.selected_courier_slug or "").strip() or not (order.selected_service_code or "").strip():
        raise NoCourierSelected()


def _claim(order: Order) -> str:
    token = uuid.uuid4().hex
    now = datetime.utcnow()
    ttl = config_int("COMMIT_CLAIM_TTL_SECONDS", 300, minimum=30, maximum=3600)
    claimed = db.session.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.status.in_(COMMITTABLE_STATUSES),
            or_(Order.commit_attempt_id.is_(None), Order.commit_attempt_at < now - timedelta(seconds=ttl)),
        )
        .values(commit_attempt_id=token, commit_attempt_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.session.rollback()
        current = db.session.get(Order, order.id, populate_existing=True)
        if current is None or not current.is_committable:
            raise InvalidState("Order status changed before it could be committed")
        raise CommitInProgress()
    db.session.commit()
    return token


def _release(order_id: str, token: str) -> None:
    try:
        db.session.rollback()
        db.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.commit_attempt_id == token)
            .values(commit_attempt_id=None, commit_attempt_at=None)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.warning("commit_claim_release_failed order_id=%s err=%s", order_id, e)


def build_parcels(order: Order) -> list[Parcel]:
    parcels = []
    for item in order.items():
        if not isinstance(item, dict):
            continue
        try:
            value = float(item.get("price") or 0)
        except (TypeError, ValueError):
            value = 0
        parcels.append(Parcel(description=str(item.get("title") or "Book"), value=value or DEFAULT_PARCEL_VALUE))
    if not parcels:
        parcels.append(Parcel(description="Book", value=DEFAULT_PARCEL_VALUE))
    return parcels


def _contact(order: Order, role: str) -> Contact:
    if role == "seller":
        return Contact(
            name=order.seller_full_name or "Seller",
            phone=order.seller_phone_number or "0000000000",
            email=order.seller_email or "seller@example.com",
        )
    return Contact(
        name=order.buyer_full_name or "Customer",
        phone=order.buyer_phone_number or "0000000000",
        email=order.buyer_email or "buyer@example.com",
    )


def _endpoint(order: Order, role: str, resolved, *, street: PhysicalAddress | None = None) -> ShipmentEndpoint:
    contact = _contact(order, role)
    if isinstance(resolved, LockerDescriptor):
        return ShipmentEndpoint(
            contact=contact,
            address=street.to_courier_block(company=contact.name) if street else None,
            locker_location_id=resolved.location_id,
            locker_provider_slug=resolved.provider_slug,
            locker_data=dict(resolved.locker_metadata or {}),
        )
    return ShipmentEndpoint(contact=contact, address=resolved.to_courier_block(company=contact.name))


def build_shipment_request(order: Order, *, vault: AddressVault) -> ShipmentRequest:
    """Resolve both sides and assemble the courier request. Raises Missing*Info."""
    pickup = resolve_address("seller", order, "pickup", vault=vault)
    delivery = resolve_address("buyer", order, "delivery", vault=vault)

    delivery_street = None
    if isinstance(delivery, LockerDescriptor):
        delivery_street = resolve_physical_address("buyer", order, "delivery", vault=vault)

    return ShipmentRequest(
        order_id=order.id,
        provider_slug=order.selected_courier_slug,
        service_level_code=order.selected_service_code,
        parcels=build_parcels(order),
        pickup=_endpoint(order, "seller", pickup),
        delivery=_endpoint(order, "buyer", delivery, street=delivery_street),
        reference=f"ORDER-{order.id}",
    )


def _compensate(courier: CourierProvider, order_id: str, shipment: ShipmentResult, reason: str) -> None:
    try:
        result = courier.cancel_shipment(
            shipment_id=shipment.shipment_id,
            tracking_number=shipment.tracking_number,
            reason=reason,
        )
        ok = bool(getattr(result, "ok", False))
    except Exception as e:
        ok = False
        current_app.logger.error("commit_compensation_failed order_id=%s shipment_id=%s err=%s", order_id, shipment.shipment_id, e)
    log_event(
        "commit_compensated",
        subject_type="order",
        subject_id=order_id,
        severity="WARN" if ok else "ERROR",
        metadata={"shipment_id": shipment.shipment_id, "tracking_number": shipment.tracking_number, "cancelled": ok},
    )
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()


def _persist_commit(
    order: Order, token: str, shipment: ShipmentResult, *, provider: str, pickup_type: str, delivery_type: str
) -> str:
    now = datetime.utcnow()
    tracking = shipment.tracking_number or order.tracking_number or ""
    delivery_data = dict(order.delivery_data())
    delivery_data.update(
        {
            "provider": provider,
            "provider_slug": order.selected_courier_slug,
            "service_level_code": order.selected_service_code,
            "rate_amount": float(order.selected_shipping_cost) if order.selected_shipping_cost is not None else None,
            "shipment_id": shipment.shipment_id,
            "waybill_url": shipment.waybill_url or "",
            "pickup_type": pickup_type,
            "delivery_type": delivery_type,
            "committed_at": now.isoformat(),
        }
    )
    moved = db.session.execute(
        update(Order)
        .where(Order.id == order.id, Order.commit_attempt_id == token, Order.status.in_(COMMITTABLE_STATUSES))
        .values(
            status="committed",
            committed_at=now,
            delivery_status="scheduled",
            tracking_number=tracking or None,
            delivery_data_json=dump_json(delivery_data),
            commit_attempt_id=None,
            commit_attempt_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if moved.rowcount != 1:
        raise PersistenceFailed()
    log_event(
        "commit_ok",
        actor_user_id=order.seller_id,
        subject_type="order",
        subject_id=order.id,
        idempotency_key=f"commit_ok:{order.id}",
        metadata={"shipment_id": shipment.shipment_id, "tracking_number": tracking},
    )
    db.session.commit()
    return tracking


def commit_to_sale(
    order_id: str,
    actor_id: str,
    *,
    courier: CourierProvider | None = None,
    vault: AddressVault | None = None,
    notifier: OrderNotifier | None = None,
) -> CommitResult:
    order = _load_order(order_id)
    bind_log_context(order_id=order.id, seller_id=order.seller_id)
    _check_preconditions(order, actor_id)

    token = _claim(order)
    order = _load_order(order_id)
    pickup_type = (order.pickup_type or "door").strip().lower()
    delivery_type = (order.delivery_type or "door").strip().lower()

    try:
        request = build_shipment_request(order, vault=vault or AddressVault())
        courier = courier or build_courier_provider(get_settings())
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        _release(order_id, token)
        raise ShipmentCreationFailed(cause_code=getattr(e, "code", "")) from e
    except Exception:
        _release(order_id, token)
        raise

    try:
        shipment = courier.create_shipment(request)
    except IntegrationRequestError as e:
        _release(order_id, token)
        current_app.logger.warning("commit_shipment_failed order_id=%s code=%s", order_id, e.code)
        raise ShipmentCreationFailed(cause_code=e.code) from e
    except Exception as e:
        _release(order_id, token)
        current_app.logger.exception("commit_shipment_error order_id=%s", order_id)
        raise ShipmentCreationFailed() from e

    if not shipment or not shipment.shipment_id:
        _release(order_id, token)
        raise ShipmentCreationFailed("Courier returned no shipment id")

    try:
        tracking = _persist_commit(
            order,
            token,
            shipment,
            provider=getattr(courier, "name", "") or "courier",
            pickup_type=pickup_type,
            delivery_type=delivery_type,
        )
    except (PersistenceFailed, SQLAlchemyError) as e:
        db.session.rollback()
        current_app.logger.error("commit_persist_failed order_id=%s shipment_id=%s err=%s", order_id, shipment.shipment_id, e)
        _compensate(courier, order_id, shipment, reason="order_update_failed")
        _release(order_id, token)
        raise PersistenceFailed() from e

    current_app.logger.info("commit_ok order_id=%s tracking=%s", order_id, tracking)

    order = db.session.get(Order, order_id, populate_existing=True)
    try:
        (notifier or OrderNotifier()).order_committed(order, pickup_type=pickup_type, delivery_type=delivery_type)
    except Exception as e:
        current_app.logger.warning("commit_notify_failed order_id=%s err=%s", order_id, e)

    return CommitResult(
        tracking_number=tracking,
        waybill_url=shipment.waybill_url or "",
        pickup_type=pickup_type,
        delivery_type=delivery_type,
        shipment_id=shipment.shipment_id,
    )
