import pytest

from rules import (
    InvalidTransition,
    can_transition,
    check_transition,
    discount_percent,
    is_low_stock,
    stock_label,
)


@pytest.mark.parametrize("stock,label", [
    (0, "Out of Stock"),
    (1, "Low Stock"),
    (5, "Low Stock"),
    (6, "In Stock"),
    (100, "In Stock"),
])
def test_stock_label(stock, label):
    assert stock_label(stock) == label


def test_low_stock():
    assert is_low_stock(5)
    assert not is_low_stock(6)


def test_discount_percent():
    assert discount_percent(750, 1000) == 25
    assert discount_percent(19999, 24999) == 20
    assert discount_percent(100, None) == 0
    assert discount_percent(100, 0) == 0
    assert discount_percent(100, 100) == 0
    assert discount_percent(120, 100) == 0


@pytest.mark.parametrize("current,target", [
    ("pending", "processing"),
    ("pending", "cancelled"),
    ("processing", "shipped"),
    ("processing", "cancelled"),
    ("shipped", "delivered"),
    ("delivered", "delivered"),
])
def test_allowed_transitions(current, target):
    assert can_transition(current, target)
    check_transition(current, target)


@pytest.mark.parametrize("current,target", [
    ("delivered", "pending"),
    ("cancelled", "processing"),
    ("shipped", "cancelled"),
    ("pending", "delivered"),
    ("pending", "refunded"),
])
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransition) as exc:
        check_transition(current, target)
    assert exc.value.current == current
    assert exc.value.target == target
