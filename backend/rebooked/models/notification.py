import uuid
from datetime import datetime

from rebooked.extensions import db
from rebooked.models.json_columns import dump_json, load_json


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False, index=True)
    order_id = db.Column(db.String(36), nullable=True, index=True)

    type = db.Column(db.String(48), nullable=False, default="info")  # info | success | warning | order_cancelled ...
    title = db.Column(db.String(160), nullable=True)
    message = db.Column(db.Text, nullable=False)
    read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime, nullable=True)

    meta = db.Column(db.Text, nullable=True)  # JSON string

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def meta_dict(self) -> dict:
        return load_json(self.meta)

    def set_meta(self, meta: dict | None) -> None:
        self.meta = dump_json(meta or {})

    def mark_read(self, read_at: datetime | None = None) -> datetime:
        stamped = read_at or datetime.utcnow()
        self.read = True
        self.read_at = stamped
        return stamped

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "type": self.type or "info",
            "title": self.title or "",
            "message": self.message or "",
            "read": bool(self.read),
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "meta": self.meta_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
