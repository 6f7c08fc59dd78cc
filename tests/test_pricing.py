from datetime import datetime, timedelta, timezone

import pytest

from pricing import (
    CouponRejected,
    evaluate_coupon,
    normalize_code,
    order_totals,
    round_half_up,
    shipping_fee,
)
from schemas import Coupon, ShippingSettings

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def coupon(**overrides):
    data = {
        "code": "SAVE10",
        "discount_type": "percentage",
        "discount_value": 10,
        "expiry_date": NOW + timedelta(days=30),
    }
    data.update(overrides)
    return Coupon(**data)


def test_percentage_coupon():
    quote = evaluate_coupon(coupon(), 250.00, now=NOW)
    assert quote.discount == 25
    assert quote.final_total == 225


def test_percentage_coupon_is_capped():
    quote = evaluate_coupon(coupon(discount_value=20, max_discount=150), 1000, now=NOW)
    assert quote.discount == 150
    assert quote.final_total == 850


def test_percentage_without_cap():
    assert evaluate_coupon(coupon(discount_value=20), 1000, now=NOW).discount == 200


def test_fixed_coupon_below_minimum_purchase():
    flat = coupon(code="FLAT500", discount_type="fixed", discount_value=500, min_purchase=1000)
    with pytest.raises(CouponRejected) as exc:
        evaluate_coupon(flat, 800, now=NOW)
    assert exc.value.reason == "min_purchase"
    assert exc.value.message == "Minimum purchase of 1000 required"


def test_fixed_coupon_never_exceeds_subtotal():
    quote = evaluate_coupon(coupon(discount_type="fixed", discount_value=500), 300, now=NOW)
    assert quote.discount == 300
    assert quote.final_total == 0


def test_unknown_coupon():
    with pytest.raises(CouponRejected) as exc:
        evaluate_coupon(None, 100, now=NOW)
    assert exc.value.reason == "invalid"


def test_inactive_coupon():
    with pytest.raises(CouponRejected) as exc:
        evaluate_coupon(coupon(is_active=False), 100, now=NOW)
    assert exc.value.reason == "inactive"


def test_expired_coupon():
    with pytest.raises(CouponRejected) as exc:
        evaluate_coupon(coupon(expiry_date=NOW), 100, now=NOW)
    assert exc.value.reason == "expired"
    assert exc.value.message == "This coupon has expired"


def test_usage_limit_reached():
    with pytest.raises(CouponRejected) as exc:
        evaluate_coupon(coupon(usage_limit=3, used_count=3), 100, now=NOW)
    assert exc.value.reason == "usage_limit"
    assert "usage limit" in exc.value.message


def test_inactive_is_reported_before_expiry():
    with pytest.raises(CouponRejected) as exc:
        evaluate_coupon(coupon(is_active=False, expiry_date=NOW - timedelta(days=1)), 100, now=NOW)
    assert exc.value.reason == "inactive"


def test_accepts_stored_document_with_naive_expiry():
    doc = {
        "_id": "abc",
        "code": "SAVE10",
        "discount_type": "percentage",
        "discount_value": 10,
        "expiry_date": datetime(2025, 7, 1),
        "created_at": datetime(2025, 1, 1),
    }
    assert evaluate_coupon(doc, 250, now=NOW).discount == 25


def test_rounding_is_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2
    assert evaluate_coupon(coupon(discount_value=15), 105, now=NOW).discount == 16


def test_normalize_code():
    assert normalize_code("  save10 ") == "SAVE10"
    assert normalize_code(None) == ""


@pytest.mark.parametrize("subtotal,expected", [(4999.99, 100), (5000, 0), (8000, 0)])
def test_shipping_threshold(subtotal, expected):
    assert shipping_fee(subtotal) == expected


def test_free_shipping_can_be_disabled():
    settings = ShippingSettings(enable_free_shipping=False, standard_fee=60)
    assert shipping_fee(10000, settings) == 60


def test_order_totals():
    totals = order_totals(2000, ShippingSettings(), discount=200)
    assert totals.subtotal == 2000
    assert totals.shipping == 100
    assert totals.discount == 200
    assert totals.total == 1900
