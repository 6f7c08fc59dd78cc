"""
Coupon evaluation and order totals.

Both the API (coupon validation, order creation) and the storefront client
(order summary) price through these functions, so a cart shows the same
discount and shipping that the order is later created with.
"""
import math
from datetime import datetime, timezone
from typing import Any, Mapping, NamedTuple, Optional, Union

from schemas import Coupon, ShippingSettings


class CouponRejected(Exception):
    """Raised when a coupon cannot be applied. `reason` is a stable code."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


class CouponQuote(NamedTuple):
    discount: int
    final_total: int


class OrderTotals(NamedTuple):
    subtotal: float
    shipping: float
    discount: float
    total: float


def round_half_up(value: float) -> int:
    # matches JavaScript Math.round, which the storefront has always used
    return int(math.floor(value + 0.5))


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return str(int(amount))
    return f"{amount:.2f}"


def evaluate_coupon(
    coupon: Union[Coupon, Mapping[str, Any], None],
    subtotal: float,
    now: Optional[datetime] = None,
) -> CouponQuote:
    """
    Validate a coupon against a cart subtotal and price the discount.

    Checks run in order and the first failure raises CouponRejected:
    unknown code, inactive, expired, usage limit reached, minimum purchase.
    Percentage discounts are capped by max_discount when set; any discount is
    capped at the subtotal so the final total never goes negative.
    """
    if coupon is None:
        raise CouponRejected("invalid", "Invalid coupon code")
    if not isinstance(coupon, Coupon):
        coupon = Coupon(**{k: v for k, v in coupon.items() if k in Coupon.model_fields})

    now = as_utc(now or datetime.now(timezone.utc))

    if not coupon.is_active:
        raise CouponRejected("inactive", "This coupon is no longer active")
    if now >= as_utc(coupon.expiry_date):
        raise CouponRejected("expired", "This coupon has expired")
    if coupon.used_count >= coupon.usage_limit:
        raise CouponRejected("usage_limit", "This coupon has reached its usage limit")
    if subtotal < coupon.min_purchase:
        raise CouponRejected(
            "min_purchase",
            f"Minimum purchase of {_format_amount(coupon.min_purchase)} required",
        )

    if coupon.discount_type == "percentage":
        discount = subtotal * coupon.discount_value / 100
        if coupon.max_discount and discount > coupon.max_discount:
            discount = coupon.max_discount
    else:
        discount = coupon.discount_value
    discount = min(discount, subtotal)

    return CouponQuote(
        discount=round_half_up(discount),
        final_total=round_half_up(subtotal - discount),
    )


def shipping_fee(subtotal: float, settings: Optional[ShippingSettings] = None) -> float:
    settings = settings or ShippingSettings()
    if settings.enable_free_shipping and subtotal >= settings.free_shipping_threshold:
        return 0.0
    return float(settings.standard_fee)


def order_totals(
    subtotal: float,
    settings: Optional[ShippingSettings] = None,
    discount: float = 0,
) -> OrderTotals:
    shipping = shipping_fee(subtotal, settings)
    total = round(subtotal + shipping - discount, 2)
    return OrderTotals(subtotal=round(subtotal, 2), shipping=shipping, discount=discount, total=total)
