from __future__ import annotations

import os
import unittest
import uuid
from datetime import datetime, timedelta

os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789")
os.environ.setdefault("INTEGRATIONS_MODE", "sandbox")
os.environ.setdefault("PAYMENTS_PROVIDER", "mock")
os.environ.setdefault("COURIER_PROVIDER", "mock")
os.environ.setdefault("EMAIL_PROVIDER", "mock")
os.environ.setdefault("NOTIFY_QUEUE", "0")

from rebooked import create_app
from rebooked.extensions import db
from rebooked.integrations.common import IntegrationResult
from rebooked.integrations.courier.base import CourierProvider, ShipmentRequest, ShipmentResult
from rebooked.integrations.email.mock_provider import MockEmailProvider
from rebooked.models import Book, Order, User
from rebooked.services.address_vault import AddressVault

CAPE_TOWN_PICKUP = {
    "street": "1 Main Rd",
    "city": "Cape Town",
    "province": "WC",
    "postal_code": "8001",
    "country": "ZA",
}

JOBURG_SHIPPING = {
    "street": "22 Jan Smuts Ave",
    "city": "Johannesburg",
    "province": "GP",
    "postal_code": "2196",
    "country": "ZA",
}


class StubCourier(CourierProvider):
    """Courier double that records calls; `on_create` runs inside create_shipment."""

    name = "stub"

    def __init__(self, *, shipment_id="SH1", tracking_number="TRK1", error=None, on_create=None):
        self.shipment_id = shipment_id
        self.tracking_number = tracking_number
        self.error = error
        self.on_create = on_create
        self.requests: list[ShipmentRequest] = []
        self.cancelled: list[dict] = []

    def create_shipment(self, request: ShipmentRequest) -> ShipmentResult:
        self.requests.append(request)
        if self.on_create is not None:
            self.on_create(request)
        if self.error is not None:
            raise self.error
        return ShipmentResult(
            shipment_id=self.shipment_id,
            tracking_number=self.tracking_number,
            waybill_url="https://example.com/waybill/SH1.pdf" if self.shipment_id else "",
        )

    def cancel_shipment(self, *, shipment_id: str = "", tracking_number: str = "", reason: str = "") -> IntegrationResult:
        self.cancelled.append({"shipment_id": shipment_id, "tracking_number": tracking_number, "reason": reason})
        return IntegrationResult(ok=True, code="OK", message="cancelled")

    def verify_webhook(self, *, raw_body: bytes, headers) -> bool:
        return True


class AppTestCase(unittest.TestCase):
    """Fresh in-memory schema per test, inside an app context."""

    def setUp(self):
        self.app = create_app()
        self.app.config.update(TESTING=True)
        self.client = self.app.test_client()
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()
        MockEmailProvider.reset()
        self.vault = AddressVault()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    def make_user(self, user_id: str | None = None, *, name: str = "", role: str = "user", **fields) -> User:
        user_id = user_id or str(uuid.uuid4())
        user = User(
            id=user_id,
            full_name=name or f"User {user_id}",
            email=f"{user_id.lower()}@rebooked.test",
            phone_number="0821234567",
            role=role,
            **fields,
        )
        db.session.add(user)
        db.session.commit()
        return user

    def encrypt(self, address: dict) -> str:
        token, _version = self.vault.encrypt(address)
        return token

    def make_book(self, seller: User, *, title: str = "Calculus", price: float = 250, **fields) -> Book:
        book = Book(seller_id=seller.id, title=title, price=price, **fields)
        db.session.add(book)
        db.session.commit()
        return book

    def make_order(
        self,
        seller: User,
        buyer: User,
        *,
        order_id: str | None = None,
        book: Book | None = None,
        status: str = "paid",
        items: list | None = None,
        shipping_address: dict | None = JOBURG_SHIPPING,
        **fields,
    ) -> Order:
        values = {
            "selected_courier_slug": "courier-x",
            "selected_service_code": "std",
            "pickup_type": "door",
            "delivery_type": "door",
            "payment_status": "paid" if status != "pending" else "pending",
            "amount": 27000,
            "total_amount": 270,
            "book_price_minor": 25000,
            "buyer_full_name": buyer.full_name,
            "buyer_email": buyer.email,
            "seller_full_name": seller.full_name,
            "seller_email": seller.email,
            "commit_deadline": datetime.utcnow() + timedelta(hours=48),
        }
        values.update(fields)
        order = Order(
            id=order_id or str(uuid.uuid4()),
            seller_id=seller.id,
            buyer_id=buyer.id,
            book_id=book.id if book else None,
            status=status,
            **values,
        )
        order.set_items(items if items is not None else [{"title": "Calculus", "price": 250}])
        if shipping_address:
            order.shipping_address_encrypted = self.encrypt(shipping_address)
        db.session.add(order)
        db.session.commit()
        return order

    def reload(self, order_id: str) -> Order:
        return db.session.get(Order, order_id, populate_existing=True)
