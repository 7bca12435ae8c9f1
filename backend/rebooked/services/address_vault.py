from __future__ import annotations

import base64
import hashlib
import json
import os

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app

from rebooked.extensions import db
from rebooked.models import Book, Order, User

ADDRESS_ENCRYPTION_VERSION = 1

# (table, purpose) -> (model, column)
_COLUMNS = {
    ("orders", "pickup"): (Order, "pickup_address_encrypted"),
    ("orders", "delivery"): (Order, "shipping_address_encrypted"),
    ("orders", "shipping"): (Order, "shipping_address_encrypted"),
    ("books", "pickup"): (Book, "pickup_address_encrypted"),
    ("profiles", "pickup"): (User, "pickup_address_encrypted"),
    ("profiles", "shipping"): (User, "shipping_address_encrypted"),
    ("profiles", "delivery"): (User, "shipping_address_encrypted"),
}


def _derive_key(secret: str) -> bytes:
    digest = hashlib.sha256(f"rebooked-address-vault:{secret}".encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def _configured_key() -> bytes:
    raw = (current_app.config.get("ADDRESS_ENCRYPTION_KEY") or os.getenv("ADDRESS_ENCRYPTION_KEY") or "").strip()
    if raw:
        return raw.encode("utf-8")
    return _derive_key(current_app.config.get("SECRET_KEY") or "dev-secret")


class AddressVault:
    """Encrypts address objects at rest and decrypts them by (table, row, purpose)."""

    def __init__(self, key: bytes | None = None):
        self._fernet = Fernet(key or _configured_key())

    def encrypt(self, address: dict) -> tuple[str, int]:
        if not isinstance(address, dict) or not address:
            raise ValueError("address must be a non-empty object")
        plaintext = json.dumps(address, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return self._fernet.encrypt(plaintext).decode("ascii"), ADDRESS_ENCRYPTION_VERSION

    def decrypt_token(self, token: str) -> dict | None:
        if not token:
            return None
        try:
            data = json.loads(self._fernet.decrypt(token.encode("ascii")).decode("utf-8"))
        except (InvalidToken, ValueError, UnicodeError):
            current_app.logger.warning("address_decrypt_invalid_token")
            return None
        return data if isinstance(data, dict) else None

    def decrypt(self, table: str, row_id: str, purpose: str) -> dict | None:
        target = _COLUMNS.get(((table or "").strip().lower(), (purpose or "").strip().lower()))
        if target is None:
            current_app.logger.warning("address_decrypt_unknown_target table=%s purpose=%s", table, purpose)
            return None
        if not row_id:
            return None
        model, column = target
        row = db.session.get(model, row_id)
        if row is None:
            return None
        return self.decrypt_token(getattr(row, column, None) or "")
