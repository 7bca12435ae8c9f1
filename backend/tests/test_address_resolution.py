from __future__ import annotations

import unittest

from _support import CAPE_TOWN_PICKUP, JOBURG_SHIPPING, AppTestCase
from rebooked.extensions import db
from rebooked.services.address_resolution import (
    LockerDescriptor,
    PhysicalAddress,
    resolve_address,
    resolve_physical_address,
)
from rebooked.services.errors import MissingDeliveryInfo, MissingPickupInfo

BOOK_PICKUP = {"street": "9 Campus Way", "city": "Stellenbosch", "province": "WC", "postal_code": "7600"}
ORDER_PICKUP = {"streetAddress": "3 Dock Rd", "city": "Cape Town", "zone": "WC", "postalCode": "8002"}


class AddressResolutionTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user(
            "S1",
            pickup_address_encrypted=self.encrypt(CAPE_TOWN_PICKUP),
            shipping_address_encrypted=self.encrypt(JOBURG_SHIPPING),
        )
        self.buyer = self.make_user("B1")

    def test_order_pickup_address_wins_over_book_and_profile(self):
        book = self.make_book(self.seller, pickup_address_encrypted=self.encrypt(BOOK_PICKUP))
        order = self.make_order(self.seller, self.buyer, book=book)
        order.pickup_address_encrypted = self.encrypt(ORDER_PICKUP)
        db.session.commit()

        found = resolve_address("seller", order, "pickup", vault=self.vault)

        self.assertIsInstance(found, PhysicalAddress)
        self.assertEqual(found.street, "3 Dock Rd")
        self.assertEqual(found.province, "WC")
        self.assertEqual(found.postal_code, "8002")

    def test_book_pickup_is_used_before_profile(self):
        book = self.make_book(self.seller, pickup_address_encrypted=self.encrypt(BOOK_PICKUP))
        order = self.make_order(self.seller, self.buyer, book=book)

        found = resolve_address("seller", order, "pickup", vault=self.vault)

        self.assertEqual(found.city, "Stellenbosch")

    def test_profile_pickup_is_the_last_door_fallback(self):
        order = self.make_order(self.seller, self.buyer)
        found = resolve_address("seller", order, "pickup", vault=self.vault)
        self.assertEqual(found.to_courier_block()["code"], "8001")

    def test_undecryptable_source_is_skipped(self):
        book = self.make_book(self.seller, pickup_address_encrypted="not-a-fernet-token")
        order = self.make_order(self.seller, self.buyer, book=book)

        found = resolve_address("seller", order, "pickup", vault=self.vault)

        self.assertEqual(found.city, "Cape Town")

    def test_no_pickup_source_raises(self):
        seller = self.make_user("S2")
        order = self.make_order(seller, self.buyer)
        with self.assertRaises(MissingPickupInfo):
            resolve_address("seller", order, "pickup", vault=self.vault)

    def test_buyer_profile_shipping_backs_up_order_address(self):
        buyer = self.make_user("B2", shipping_address_encrypted=self.encrypt(JOBURG_SHIPPING))
        order = self.make_order(self.seller, buyer, shipping_address=None)

        found = resolve_address("buyer", order, "delivery", vault=self.vault)

        self.assertEqual(found.city, "Johannesburg")

    def test_no_delivery_source_raises(self):
        order = self.make_order(self.seller, self.buyer, shipping_address=None)
        with self.assertRaises(MissingDeliveryInfo):
            resolve_address("buyer", order, "delivery", vault=self.vault)

    def test_locker_columns_then_cached_data_then_profile(self):
        order = self.make_order(
            self.seller,
            self.buyer,
            delivery_type="locker",
            delivery_locker_location_id="PUP-1",
            delivery_locker_provider_slug="pargo",
        )
        found = resolve_address("buyer", order, "delivery", vault=self.vault)
        self.assertIsInstance(found, LockerDescriptor)
        self.assertEqual(found.location_id, "PUP-1")

        order.delivery_locker_location_id = None
        order.delivery_locker_data_json = '{"id": "PUP-2", "provider_slug": "pargo", "name": "Mall"}'
        db.session.commit()
        found = resolve_address("buyer", order, "delivery", vault=self.vault)
        self.assertEqual(found.location_id, "PUP-2")
        self.assertEqual(found.locker_metadata["name"], "Mall")

        order.delivery_locker_data_json = None
        self.buyer.preferred_delivery_locker_location_id = "PUP-3"
        db.session.commit()
        found = resolve_address("buyer", order, "delivery", vault=self.vault)
        self.assertEqual(found.location_id, "PUP-3")
        self.assertEqual(found.provider_slug, "pargo")

    def test_locker_delivery_without_any_locker_raises(self):
        order = self.make_order(self.seller, self.buyer, delivery_type="locker")
        with self.assertRaises(MissingDeliveryInfo):
            resolve_address("buyer", order, "delivery", vault=self.vault)

    def test_locker_buyer_street_falls_back_to_seller_pickup(self):
        order = self.make_order(self.seller, self.buyer, delivery_type="locker", shipping_address=None)
        found = resolve_physical_address("buyer", order, "delivery", vault=self.vault)
        self.assertIsNotNone(found)
        self.assertEqual(found.city, "Cape Town")

    def test_address_mapping_accepts_alternate_keys(self):
        found = PhysicalAddress.from_mapping({"line1": "5 Long St", "suburb": "Gardens", "zip": "8001"})
        self.assertEqual(found.street, "5 Long St")
        self.assertEqual(found.city, "Gardens")
        self.assertEqual(found.country, "ZA")
        self.assertIsNone(PhysicalAddress.from_mapping({"country": "ZA"}))


if __name__ == "__main__":
    unittest.main()
