from __future__ import annotations

import unittest
from unittest import mock

from rebooked.integrations.common import IntegrationRequestError
from rebooked.integrations.courier.base import Contact, Parcel, RateRequest, ShipmentEndpoint, ShipmentRequest
from rebooked.integrations.courier.bobgo_provider import BobGoCourierProvider, format_address, resolve_base_url

SELLER_STREET = {
    "street": "1 Main Rd",
    "suburb": "Gardens",
    "city": "Cape Town",
    "province": "Western Cape",
    "postal_code": "8001",
    "country": "South Africa",
    "company": "Sam Seller",
}


def _shipment(**overrides) -> ShipmentRequest:
    values = {
        "order_id": "O1",
        "provider_slug": "courier-x",
        "service_level_code": "std",
        "parcels": [Parcel(description="Calculus", value=250), Parcel(description="Algebra", value=120.5)],
        "pickup": ShipmentEndpoint(contact=Contact(" Sam Seller ", "0821234567", "s1@rebooked.test"), address=SELLER_STREET),
        "delivery": ShipmentEndpoint(
            contact=Contact("Bea Buyer", "0831234567", "b1@rebooked.test"),
            locker_location_id="PUP-9",
            locker_provider_slug="pargo",
        ),
    }
    values.update(overrides)
    return ShipmentRequest(**values)


class FormatAddressTestCase(unittest.TestCase):
    def test_full_address_is_mapped_to_bobgo_fields(self):
        self.assertEqual(
            format_address(SELLER_STREET),
            {
                "street_address": "1 Main Rd",
                "local_area": "Gardens",
                "city": "Cape Town",
                "zone": "WES",
                "code": "8001",
                "country": "ZA",
                "company": "Sam Seller",
            },
        )

    def test_missing_fields_fall_back_to_defaults(self):
        formatted = format_address({"city": "Durban"})

        self.assertEqual(formatted["local_area"], "Durban")
        self.assertEqual(formatted["city"], "Durban")
        self.assertEqual(formatted["zone"], "ZA")
        self.assertEqual(formatted["country"], "ZA")
        self.assertEqual(formatted["street_address"], "")
        self.assertNotIn("company", formatted)

    def test_courier_block_keys_are_accepted(self):
        formatted = format_address({"street_address": "22 Jan Smuts Ave", "local_area": "Rosebank", "zone": "gp", "code": "2196"})

        self.assertEqual(formatted["street_address"], "22 Jan Smuts Ave")
        self.assertEqual(formatted["city"], "Rosebank")
        self.assertEqual(formatted["zone"], "GP")
        self.assertEqual(formatted["code"], "2196")

    def test_base_url_gets_version_suffix(self):
        self.assertEqual(resolve_base_url(""), "https://api.bobgo.co.za/v2")
        self.assertEqual(resolve_base_url("https://sandbox.bobgo.co.za"), "https://api.sandbox.bobgo.co.za/v2")
        self.assertEqual(resolve_base_url("https://api.bobgo.co.za/"), "https://api.bobgo.co.za/v2")


class BuildPayloadTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = BobGoCourierProvider(api_key="key")

    def test_street_collection_and_locker_delivery(self):
        payload = self.provider.build_payload(_shipment())

        self.assertEqual(payload["collection_address"]["street_address"], "1 Main Rd")
        self.assertEqual(payload["collection_address"]["zone"], "WES")
        self.assertEqual(payload["collection_address"]["country"], "ZA")
        self.assertEqual(payload["collection_contact_name"], "Sam Seller")
        self.assertEqual(payload["collection_contact_mobile_number"], "0821234567")
        self.assertEqual(payload["delivery_pickup_point_location_id"], "PUP-9")
        self.assertNotIn("delivery_address", payload)
        self.assertNotIn("collection_pickup_point_location_id", payload)
        self.assertEqual(payload["delivery_contact_email"], "b1@rebooked.test")

    def test_declared_value_sums_the_parcels(self):
        payload = self.provider.build_payload(_shipment())

        self.assertEqual(payload["declared_value"], 370.5)
        self.assertEqual(len(payload["parcels"]), 2)
        self.assertEqual(payload["parcels"][0]["description"], "Calculus")
        self.assertEqual(payload["parcels"][0]["submitted_weight_kg"], 1)
        self.assertEqual(payload["provider_slug"], "courier-x")
        self.assertEqual(payload["service_level_code"], "std")
        self.assertEqual(payload["custom_tracking_reference"], "ORDER-O1")

    def test_locker_collection_uses_pickup_point_id(self):
        request = _shipment(
            pickup=ShipmentEndpoint(
                contact=Contact("Sam Seller", "0821234567", "s1@rebooked.test"),
                locker_location_id="PUP-1",
                locker_provider_slug="pargo",
            ),
            delivery=ShipmentEndpoint(
                contact=Contact("Bea Buyer", "0831234567", "b1@rebooked.test"),
                address={"street": "22 Jan Smuts Ave", "city": "Johannesburg", "province": "GP", "postal_code": "2196"},
            ),
            reference="RB-77",
        )

        payload = self.provider.build_payload(request)

        self.assertEqual(payload["collection_pickup_point_location_id"], "PUP-1")
        self.assertEqual(payload["delivery_address"]["city"], "Johannesburg")
        self.assertEqual(payload["custom_tracking_reference"], "RB-77")

    def test_street_side_without_street_or_area_is_rejected(self):
        request = _shipment(delivery=ShipmentEndpoint(contact=Contact("Bea", "", ""), address={"postal_code": "2196"}))

        with self.assertRaises(IntegrationRequestError) as ctx:
            self.provider.build_payload(request)
        self.assertEqual(ctx.exception.code, "BOBGO_REJECTED")


class RatesTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = BobGoCourierProvider(api_key="key", base_url="https://api.bobgo.co.za/v2")
        self.request = RateRequest(
            parcels=[Parcel(description="Calculus", value=250)],
            collection_address=SELLER_STREET,
            delivery_locker_id="PUP-9",
            locker_provider_slug="pargo",
        )

    def _response(self, status_code: int, body: dict):
        res = mock.Mock(status_code=status_code, content=b"{}", text="")
        res.json.return_value = body
        return res

    def test_rates_are_parsed_into_quotes(self):
        body = {
            "provider_rate_requests": [
                {
                    "provider_slug": "courier-x",
                    "provider_name": "Courier X",
                    "responses": [
                        {"service_level_code": "std", "rate_amount": 95.0, "service_level": {"name": "Standard", "service_level_days": 3}},
                        {"service_level": {"code": "exp", "name": "Express"}, "rate_amount": "150.50"},
                        {"rate_amount": 10},
                    ],
                }
            ]
        }
        with mock.patch(
            "rebooked.integrations.courier.bobgo_provider.requests.post", return_value=self._response(200, body)
        ) as post:
            quotes = self.provider.get_rates(self.request)

        self.assertEqual(post.call_args.args[0], "https://api.bobgo.co.za/v2/rates")
        sent = post.call_args.kwargs["json"]
        self.assertEqual(sent["delivery_pickup_point_location_id"], "PUP-9")
        self.assertEqual(sent["pickup_point_provider_slug"], "pargo")
        self.assertEqual(sent["collection_address"]["city"], "Cape Town")
        self.assertEqual(sent["declared_value"], 250)

        self.assertEqual([(q.service_level_code, q.amount_minor) for q in quotes], [("std", 9500), ("exp", 15050)])
        self.assertEqual(quotes[0].transit_days, 3)
        self.assertIsNone(quotes[1].transit_days)
        self.assertEqual(quotes[1].service_name, "Express")

    def test_rate_request_needs_both_sides(self):
        with self.assertRaises(IntegrationRequestError) as ctx:
            self.provider.build_rates_payload(RateRequest(parcels=[Parcel(description="Calculus", value=250)]))
        self.assertEqual(ctx.exception.code, "BOBGO_REJECTED")

    def test_gateway_error_is_raised(self):
        with mock.patch(
            "rebooked.integrations.courier.bobgo_provider.requests.post",
            return_value=self._response(422, {"message": "bad zone"}),
        ):
            with self.assertRaises(IntegrationRequestError) as ctx:
                self.provider.get_rates(self.request)
        self.assertEqual(ctx.exception.code, "BOBGO_RATES_FAILED")


if __name__ == "__main__":
    unittest.main()
