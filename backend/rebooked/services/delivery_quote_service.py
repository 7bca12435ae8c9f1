from __future__ import annotations

from flask import current_app

from rebooked.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    IntegrationRequestError,
)
from rebooked.integrations.courier.base import (
    DEFAULT_PARCEL_VALUE,
    CourierProvider,
    Parcel,
    RateQuote,
    RateRequest,
)
from rebooked.integrations.courier.factory import build_courier_provider
from rebooked.models import Book
from rebooked.models.order import FULFILMENT_TYPES
from rebooked.services.address_resolution import DEFAULT_LOCKER_PROVIDER, PhysicalAddress
from rebooked.services.address_vault import AddressVault
from rebooked.services.errors import (
    CheckoutError,
    DeliveryQuoteFailed,
    InvalidDeliveryOption,
    MissingDeliveryInfo,
    MissingPickupInfo,
)
from rebooked.utils.settings import get_settings


def normalize_delivery_type(raw: str | None) -> str:
    value = (raw or "door").strip().lower()
    if value not in FULFILMENT_TYPES:
        raise CheckoutError(f"Unknown delivery type: {value}")
    return value


def seller_pickup_block(book: Book, *, vault: AddressVault) -> dict:
    """Book pickup address first, then the seller profile."""
    for table, row_id in (("books", book.id), ("profiles", book.seller_id)):
        address = PhysicalAddress.from_mapping(vault.decrypt(table, row_id, "pickup"))
        if address is not None:
            return address.to_courier_block()
    raise MissingPickupInfo("The seller has not set a pickup address for this book")


def build_rate_request(
    book: Book,
    *,
    delivery_type: str,
    shipping_address: dict | None = None,
    delivery_locker: dict | None = None,
    vault: AddressVault | None = None,
) -> RateRequest:
    parcel = Parcel(description=book.title or "Book", value=float(book.price or 0) or DEFAULT_PARCEL_VALUE)
    request = RateRequest(
        parcels=[parcel],
        collection_address=seller_pickup_block(book, vault=vault or AddressVault()),
    )
    if normalize_delivery_type(delivery_type) == "locker":
        locker = delivery_locker if isinstance(delivery_locker, dict) else {}
        locker_id = str(locker.get("id") or locker.get("location_id") or "").strip()
        if not locker_id:
            raise CheckoutError("Select a delivery locker")
        request.delivery_locker_id = locker_id
        request.locker_provider_slug = str(locker.get("provider_slug") or DEFAULT_LOCKER_PROVIDER)
        return request

    address = PhysicalAddress.from_mapping(shipping_address)
    if address is None:
        raise MissingDeliveryInfo("A shipping address is required")
    request.delivery_address = address.to_courier_block()
    return request


def quote_delivery(request: RateRequest, *, courier: CourierProvider | None = None) -> list[RateQuote]:
    try:
        provider = courier or build_courier_provider(get_settings())
        quotes = provider.get_rates(request)
    except (IntegrationDisabledError, IntegrationMisconfiguredError, IntegrationRequestError) as e:
        code = getattr(e, "code", "") or str(e)
        current_app.logger.warning("delivery_quote_failed code=%s", code)
        raise DeliveryQuoteFailed(cause_code=code) from e
    quotes = sorted(quotes, key=lambda q: int(q.amount_minor))
    current_app.logger.info("delivery_quoted options=%s", len(quotes))
    return quotes


def select_quote(quotes: list[RateQuote], provider_slug: str, service_level_code: str) -> RateQuote:
    for quote in quotes:
        if quote.matches(provider_slug, service_level_code):
            return quote
    raise InvalidDeliveryOption()
