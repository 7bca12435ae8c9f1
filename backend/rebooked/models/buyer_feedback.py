import uuid
from datetime import datetime

from rebooked.extensions import db


class BuyerFeedback(db.Model):
    """Buyer's receipt confirmation or dispute, frozen at submission time."""

    __tablename__ = "buyer_feedback_orders"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    buyer_id = db.Column(db.String(36), nullable=False, index=True)
    seller_id = db.Column(db.String(36), nullable=False, index=True)
    book_id = db.Column(db.String(36), nullable=True)

    buyer_status = db.Column(db.String(16), nullable=False)  # received | not_received
    buyer_feedback = db.Column(db.Text, nullable=True)

    order_amount = db.Column(db.Integer, nullable=False, default=0)
    order_total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    order_status = db.Column(db.String(32), nullable=True)
    delivery_status = db.Column(db.String(32), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "buyer_status": self.buyer_status,
            "buyer_feedback": self.buyer_feedback or "",
            "order_amount": int(self.order_amount or 0),
            "order_status": self.order_status or "",
            "delivery_status": self.delivery_status or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
