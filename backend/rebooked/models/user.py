import uuid
from datetime import datetime

from rebooked.extensions import db
from rebooked.models.json_columns import dump_json, load_json


class User(db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    full_name = db.Column(db.String(160), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    phone_number = db.Column(db.String(32), nullable=True)

    role = db.Column(db.String(32), nullable=False, default="user")

    # Fernet tokens, see services/address_vault.py
    pickup_address_encrypted = db.Column(db.Text, nullable=True)
    shipping_address_encrypted = db.Column(db.Text, nullable=True)
    address_encryption_version = db.Column(db.Integer, nullable=True)

    preferred_delivery_locker_location_id = db.Column(db.String(64), nullable=True)
    preferred_delivery_locker_provider_slug = db.Column(db.String(64), nullable=True)
    preferred_delivery_locker_data_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def is_admin(self) -> bool:
        return (self.role or "").strip().lower() in ("admin", "super_admin")

    def preferred_locker_data(self) -> dict:
        return load_json(self.preferred_delivery_locker_data_json)

    def set_preferred_locker_data(self, data: dict | None) -> None:
        self.preferred_delivery_locker_data_json = dump_json(data or {})

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name or "",
            "email": self.email,
            "phone_number": self.phone_number or "",
            "role": self.role or "user",
            "has_pickup_address": bool(self.pickup_address_encrypted),
            "has_shipping_address": bool(self.shipping_address_encrypted),
            "preferred_delivery_locker_location_id": self.preferred_delivery_locker_location_id,
            "preferred_delivery_locker_provider_slug": self.preferred_delivery_locker_provider_slug,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
