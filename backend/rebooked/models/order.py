import uuid
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from rebooked.extensions import db
from rebooked.models.json_columns import dump_json, load_json


COMMITTABLE_STATUSES = ("pending", "paid")
TERMINAL_STATUSES = ("completed", "cancelled")

# Parcel is with the courier; cancellation is no longer self-service.
DISPATCHED_STATES = ("collected", "picked_up", "in_transit", "out_for_delivery", "delivered")

FULFILMENT_TYPES = ("door", "locker")


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    buyer_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False, index=True)
    seller_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False, index=True)
    book_id = db.Column(db.String(36), db.ForeignKey("books.id"), nullable=True, index=True)

    # Contact snapshot taken at checkout
    buyer_full_name = db.Column(db.String(160), nullable=True)
    buyer_email = db.Column(db.String(255), nullable=True)
    buyer_phone_number = db.Column(db.String(32), nullable=True)
    seller_full_name = db.Column(db.String(160), nullable=True)
    seller_email = db.Column(db.String(255), nullable=True)
    seller_phone_number = db.Column(db.String(32), nullable=True)

    # Money: *_minor and amount are cents; total_amount is rands
    amount = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    book_price_minor = db.Column(db.Integer, nullable=False, default=0)
    delivery_fee_minor = db.Column(db.Integer, nullable=False, default=0)
    platform_fee_minor = db.Column(db.Integer, nullable=False, default=0)
    items_json = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(32), nullable=False, default="pending")
    payment_provider = db.Column(db.String(32), nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True, unique=True, index=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    refund_status = db.Column(db.String(32), nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)

    pickup_type = db.Column(db.String(16), nullable=False, default="door")
    delivery_type = db.Column(db.String(16), nullable=False, default="door")
    delivery_option = db.Column(db.String(64), nullable=True)
    selected_courier_slug = db.Column(db.String(64), nullable=True)
    selected_service_code = db.Column(db.String(64), nullable=True)
    selected_shipping_cost = db.Column(db.Numeric(12, 2), nullable=True)

    pickup_locker_location_id = db.Column(db.String(64), nullable=True)
    pickup_locker_provider_slug = db.Column(db.String(64), nullable=True)
    pickup_locker_data_json = db.Column(db.Text, nullable=True)
    delivery_locker_location_id = db.Column(db.String(64), nullable=True)
    delivery_locker_provider_slug = db.Column(db.String(64), nullable=True)
    delivery_locker_data_json = db.Column(db.Text, nullable=True)

    pickup_address_encrypted = db.Column(db.Text, nullable=True)
    shipping_address_encrypted = db.Column(db.Text, nullable=True)
    address_encryption_version = db.Column(db.Integer, nullable=True)

    committed_at = db.Column(db.DateTime, nullable=True)
    commit_deadline = db.Column(db.DateTime, nullable=True, index=True)
    # Set while a commit call holds the order; cleared on success or failure.
    commit_attempt_id = db.Column(db.String(64), nullable=True)
    commit_attempt_at = db.Column(db.DateTime, nullable=True)
    decline_reason = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    tracking_number = db.Column(db.String(128), nullable=True, index=True)
    tracking_data_json = db.Column(db.Text, nullable=True)
    delivery_status = db.Column(db.String(32), nullable=True)
    delivery_data_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def items(self) -> list:
        return load_json(self.items_json, [])

    def set_items(self, items: list) -> None:
        self.items_json = dump_json(list(items or []))

    def delivery_data(self) -> dict:
        return load_json(self.delivery_data_json)

    def tracking_data(self) -> dict:
        return load_json(self.tracking_data_json)

    def set_tracking_data(self, data: dict) -> None:
        self.tracking_data_json = dump_json(data or {})

    def locker_data(self, purpose: str) -> dict:
        if purpose == "pickup":
            return load_json(self.pickup_locker_data_json)
        return load_json(self.delivery_locker_data_json)

    def items_subtotal_minor(self) -> int:
        total = Decimal("0")
        for item in self.items():
            try:
                price = Decimal(str(item.get("price") or 0))
                qty = int(item.get("quantity") or 1)
            except Exception:
                continue
            total += price * max(1, qty)
        if total <= 0:
            return int(self.book_price_minor or 0)
        return int((total * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @property
    def is_committable(self) -> bool:
        return (self.status or "") in COMMITTABLE_STATUSES

    def to_dict(self) -> dict:
        delivery = self.delivery_data()
        return {
            "id": self.id,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "book_id": self.book_id,
            "buyer_full_name": self.buyer_full_name or "",
            "seller_full_name": self.seller_full_name or "",
            "amount": int(self.amount or 0),
            "total_amount": float(self.total_amount or 0),
            "items": self.items(),
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_reference": self.payment_reference or "",
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "refund_status": self.refund_status or "",
            "pickup_type": self.pickup_type or "door",
            "delivery_type": self.delivery_type or "door",
            "delivery_option": self.delivery_option or "",
            "selected_courier_slug": self.selected_courier_slug or "",
            "selected_service_code": self.selected_service_code or "",
            "selected_shipping_cost": float(self.selected_shipping_cost) if self.selected_shipping_cost is not None else None,
            "committed_at": self.committed_at.isoformat() if self.committed_at else None,
            "commit_deadline": self.commit_deadline.isoformat() if self.commit_deadline else None,
            "cancellation_reason": self.cancellation_reason or "",
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "tracking_number": self.tracking_number or "",
            "delivery_status": self.delivery_status or "",
            "waybill_url": delivery.get("waybill_url") or "",
            "tracking_events": (self.tracking_data().get("events") or [])[-20:],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
