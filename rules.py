"""Stock labels, product discount display and the order status machine."""
from typing import Dict, FrozenSet, Optional

from pricing import round_half_up

LOW_STOCK_THRESHOLD = 5

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")

ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}


class InvalidTransition(Exception):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot change order status from '{current}' to '{target}'")
        self.current = current
        self.target = target


def stock_label(stock: int) -> str:
    if stock <= 0:
        return "Out of Stock"
    if stock <= LOW_STOCK_THRESHOLD:
        return "Low Stock"
    return "In Stock"


def is_low_stock(stock: int) -> bool:
    return stock <= LOW_STOCK_THRESHOLD


def discount_percent(price: float, original_price: Optional[float]) -> int:
    if not original_price or original_price <= price:
        return 0
    return round_half_up((original_price - price) / original_price * 100)


def can_transition(current: str, target: str) -> bool:
    if target not in ORDER_TRANSITIONS:
        return False
    if current == target:
        return True
    return target in ORDER_TRANSITIONS.get(current, frozenset())


def check_transition(current: str, target: str) -> None:
    """Raise InvalidTransition unless `current -> target` is allowed.

    Re-applying the current status is accepted as a no-op.
    """
    if not can_transition(current, target):
        raise InvalidTransition(current, target)
