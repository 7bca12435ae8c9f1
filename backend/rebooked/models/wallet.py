import uuid
from datetime import datetime

from rebooked.extensions import db


class UserWallet(db.Model):
    __tablename__ = "user_wallets"
    __table_args__ = (
        db.CheckConstraint("available_balance >= 0", name="ck_user_wallets_available_nonneg"),
        db.CheckConstraint("pending_balance >= 0", name="ck_user_wallets_pending_nonneg"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False, unique=True, index=True)

    # cents
    available_balance = db.Column(db.Integer, nullable=False, default=0)
    pending_balance = db.Column(db.Integer, nullable=False, default=0)
    total_earned = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "available_balance": int(self.available_balance or 0),
            "pending_balance": int(self.pending_balance or 0),
            "total_earned": int(self.total_earned or 0),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class WalletTransaction(db.Model):
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.UniqueConstraint("reference_order_id", "type", name="uq_wallet_txn_order_type"),
        db.UniqueConstraint("reference_payout_id", "type", name="uq_wallet_txn_payout_type"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)  # credit | debit | hold | release
    amount = db.Column(db.Integer, nullable=False)  # cents, always positive
    status = db.Column(db.String(16), nullable=False, default="completed")
    reference_order_id = db.Column(db.String(36), nullable=True, index=True)
    reference_payout_id = db.Column(db.String(36), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "amount": int(self.amount or 0),
            "status": self.status,
            "reference_order_id": self.reference_order_id,
            "reference_payout_id": self.reference_payout_id,
            "reason": self.reason or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
