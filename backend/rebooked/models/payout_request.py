import uuid
from datetime import datetime

from rebooked.extensions import db


class PayoutRequest(db.Model):
    __tablename__ = "payout_requests"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)  # cents
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending | approved | denied | paid

    processed_by = db.Column(db.String(36), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    approved_at = db.Column(db.DateTime, nullable=True)
    denied_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": int(self.amount or 0),
            "notes": self.notes or "",
            "status": self.status,
            "admin_notes": self.admin_notes or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "denied_at": self.denied_at.isoformat() if self.denied_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }
