from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

PLATFORM_COMMISSION_BPS = 1000
SELLER_PAYOUT_BPS = 10000 - PLATFORM_COMMISSION_BPS
DEFAULT_PLATFORM_FEE_MINOR = 2000


def _clamp_minor(value: int | float | Decimal | None) -> int:
    try:
        parsed = int(value or 0)
    except Exception:
        parsed = 0
    return parsed if parsed > 0 else 0


def money_major_to_minor(amount: float | Decimal | int | str | None) -> int:
    try:
        parsed = Decimal(str(amount or 0))
    except Exception:
        parsed = Decimal("0")
    minor = (parsed * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return _clamp_minor(int(minor))


def money_minor_to_major(minor: int | float | Decimal | None) -> Decimal:
    try:
        parsed = Decimal(int(minor or 0))
    except Exception:
        parsed = Decimal("0")
    return (parsed / Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def bps_of_minor(amount_minor: int, bps: int) -> int:
    amt = Decimal(_clamp_minor(amount_minor))
    rate = Decimal(int(max(0, bps)))
    raw = (amt * rate) / Decimal("10000")
    return _clamp_minor(int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def seller_credit_minor(amount_minor: int) -> int:
    """Seller share of a sale after the 10% platform commission (half-up)."""
    return bps_of_minor(amount_minor, SELLER_PAYOUT_BPS)


def checkout_totals_minor(*, book_price_minor: int, delivery_fee_minor: int, platform_fee_minor: int) -> dict:
    book = _clamp_minor(book_price_minor)
    delivery = _clamp_minor(delivery_fee_minor)
    fee = _clamp_minor(platform_fee_minor)
    total = book + delivery + fee
    return {
        "book_price_minor": book,
        "delivery_fee_minor": delivery,
        "platform_fee_minor": fee,
        "total_minor": total,
        "total_major": money_minor_to_major(total),
    }
