import uuid
from datetime import datetime

from rebooked.extensions import db


class Book(db.Model):
    __tablename__ = "books"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    seller_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False, default="")
    author = db.Column(db.String(255), nullable=True)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    condition = db.Column(db.String(32), nullable=True)

    pickup_address_encrypted = db.Column(db.Text, nullable=True)

    sold = db.Column(db.Boolean, nullable=False, default=False)
    availability = db.Column(db.String(24), nullable=False, default="available")  # available | reserved | sold
    sold_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def mark_sold(self, when: datetime | None = None) -> None:
        self.sold = True
        self.availability = "sold"
        self.sold_at = when or datetime.utcnow()

    def relist(self) -> None:
        self.sold = False
        self.availability = "available"
        self.sold_at = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "title": self.title or "",
            "author": self.author or "",
            "price": float(self.price or 0),
            "condition": self.condition or "",
            "sold": bool(self.sold),
            "availability": self.availability or "available",
        }
