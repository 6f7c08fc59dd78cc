"""
Storefront client state

Cart, wishlist and catalog state for a storefront front end, plus a small HTTP
client for the REST API. Cart and wishlist live in a key/value storage (a plain
dict, or JsonFileStorage to survive restarts) the way a browser keeps them in
localStorage: each value is a JSON string of the form {"items": [...]}.
"""
import json
import logging
import os
from collections.abc import MutableMapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import requests
from pydantic import BaseModel, Field

from pricing import CouponRejected, OrderTotals, evaluate_coupon, normalize_code, order_totals
from schemas import SiteSettings

logger = logging.getLogger(__name__)

DEFAULT_API_URL = os.getenv("STOREFRONT_API_URL", "http://localhost:8000")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ----------------------- Items -----------------------
class CartItem(BaseModel):
    id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    image: Optional[str] = None


class WishlistItem(BaseModel):
    id: str
    name: str
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    added_at: datetime = Field(default_factory=_utcnow)


# ----------------------- Storage -----------------------
class JsonFileStorage(MutableMapping):
    """A dict of JSON strings mirrored to a file after every write."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._data: Dict[str, str] = {}
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                logger.warning("Could not read storage file %s, starting empty", self.path, exc_info=True)
                data = {}
            if not isinstance(data, dict):
                logger.warning("Storage file %s does not hold an object, starting empty", self.path)
                data = {}
            self._data = data

    def _flush(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data), encoding="utf-8")

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __setitem__(self, key: str, value: str):
        self._data[key] = value
        self._flush()

    def __delitem__(self, key: str):
        del self._data[key]
        self._flush()

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)


def _load_items(storage: MutableMapping, key: str, model):
    raw = storage.get(key)
    if not raw:
        return []
    try:
        return [model(**item) for item in json.loads(raw)["items"]]
    except (ValueError, KeyError, TypeError):
        # ValidationError is a ValueError
        logger.warning("Discarding unreadable %s data in storage", key, exc_info=True)
        return []


def _save_items(storage: MutableMapping, key: str, items: Sequence[BaseModel]):
    storage[key] = json.dumps({"items": [item.model_dump(mode="json") for item in items]})


# ----------------------- Cart -----------------------
class Cart:
    storage_key = "cart"

    def __init__(self, storage: Optional[MutableMapping] = None):
        self.storage = storage if storage is not None else {}
        self.items: List[CartItem] = _load_items(self.storage, self.storage_key, CartItem)

    def _find(self, item_id: str) -> Optional[CartItem]:
        return next((i for i in self.items if i.id == item_id), None)

    def _persist(self):
        _save_items(self.storage, self.storage_key, self.items)

    def add(self, item: Union[CartItem, Mapping[str, Any]], quantity: int = 1):
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        data = item.model_dump() if isinstance(item, CartItem) else dict(item)
        existing = self._find(data["id"])
        if existing:
            existing.quantity += quantity
        else:
            data["quantity"] = quantity
            self.items.append(CartItem(**data))
        self._persist()

    def remove(self, item_id: str):
        self.items = [i for i in self.items if i.id != item_id]
        self._persist()

    def set_quantity(self, item_id: str, quantity: int):
        if quantity <= 0:
            self.remove(item_id)
            return
        existing = self._find(item_id)
        if existing:
            existing.quantity = quantity
            self._persist()

    def clear(self):
        self.items = []
        self._persist()

    @property
    def total_items(self) -> int:
        return sum(i.quantity for i in self.items)

    @property
    def total_price(self) -> float:
        return sum(i.price * i.quantity for i in self.items)

    def __len__(self) -> int:
        return len(self.items)


# ----------------------- Wishlist -----------------------
WISHLIST_SORTS = ("newest", "oldest", "price-low", "price-high", "name")


class Wishlist:
    storage_key = "wishlist"

    def __init__(self, storage: Optional[MutableMapping] = None):
        self.storage = storage if storage is not None else {}
        self.items: List[WishlistItem] = _load_items(self.storage, self.storage_key, WishlistItem)

    def _persist(self):
        _save_items(self.storage, self.storage_key, self.items)

    def __contains__(self, item_id: str) -> bool:
        return any(i.id == item_id for i in self.items)

    def add(self, item: Union[WishlistItem, Mapping[str, Any]]):
        data = item.model_dump(exclude={"added_at"}) if isinstance(item, WishlistItem) else dict(item)
        if data["id"] in self:
            return
        data.pop("added_at", None)
        self.items.append(WishlistItem(**data))
        self._persist()

    def remove(self, item_id: str):
        self.items = [i for i in self.items if i.id != item_id]
        self._persist()

    def toggle(self, item: Union[WishlistItem, Mapping[str, Any]]) -> bool:
        """Add the item if missing, otherwise remove it. Returns True when it was added."""
        item_id = item.id if isinstance(item, WishlistItem) else item["id"]
        if item_id in self:
            self.remove(item_id)
            return False
        self.add(item)
        return True

    def clear(self):
        self.items = []
        self._persist()

    @property
    def total_items(self) -> int:
        return len(self.items)

    def sorted(self, by: str = "newest") -> List[WishlistItem]:
        if by == "newest":
            return sorted(self.items, key=lambda i: i.added_at, reverse=True)
        if by == "oldest":
            return sorted(self.items, key=lambda i: i.added_at)
        if by == "price-low":
            return sorted(self.items, key=lambda i: i.price)
        if by == "price-high":
            return sorted(self.items, key=lambda i: i.price, reverse=True)
        if by == "name":
            return sorted(self.items, key=lambda i: i.name.lower())
        raise ValueError(f"Unknown sort: {by}")


# ----------------------- Catalog -----------------------
def filter_products(
    products: Iterable[Mapping[str, Any]],
    query: str = "",
    categories: Iterable[str] = (),
    colors: Iterable[str] = (),
    badges: Iterable[str] = (),
    in_stock_only: bool = False,
    price_range: Optional[Tuple[float, float]] = None,
) -> List[Mapping[str, Any]]:
    query = (query or "").strip().lower()
    categories, colors, badges = set(categories), set(colors), set(badges)
    result = []
    for p in products:
        if query and not any(query in (p.get(f) or "").lower() for f in ("name", "category", "description")):
            continue
        if categories and p.get("category") not in categories:
            continue
        if colors and not colors.intersection(p.get("colors") or []):
            continue
        if badges and p.get("badge") not in badges:
            continue
        if in_stock_only and (p.get("stock") or 0) <= 0:
            continue
        if price_range is not None:
            low, high = price_range
            if not low <= p.get("price", 0) <= high:
                continue
        result.append(p)
    return result


def sort_products(products: Iterable[Mapping[str, Any]], by: str = "default") -> List[Mapping[str, Any]]:
    products = list(products)
    if by == "newest":
        # ISO timestamps from the API sort lexicographically
        return sorted(products, key=lambda p: p.get("created_at") or "", reverse=True)
    if by == "price-low":
        return sorted(products, key=lambda p: p.get("price", 0))
    if by == "price-high":
        return sorted(products, key=lambda p: p.get("price", 0), reverse=True)
    if by == "default":
        return products
    raise ValueError(f"Unknown sort: {by}")


class Catalog:
    """Products and categories fetched once and browsed locally."""

    def __init__(self, products: Optional[List[Dict[str, Any]]] = None, categories: Optional[List[Dict[str, Any]]] = None):
        self.products = products or []
        self.categories = categories or []

    def load(self, client: "StorefrontClient", limit: int = 100):
        self.products = client.list_products(limit=limit)
        self.categories = client.list_categories()
        logger.info("Catalog loaded: %d products, %d categories", len(self.products), len(self.categories))

    def get(self, product_id: str) -> Optional[Dict[str, Any]]:
        return next((p for p in self.products if p.get("id") == product_id), None)

    def browse(self, sort: str = "default", **filters) -> List[Mapping[str, Any]]:
        return sort_products(filter_products(self.products, **filters), sort)

    @property
    def featured(self) -> List[Dict[str, Any]]:
        return [p for p in self.products if p.get("featured")]


# ----------------------- HTTP client -----------------------
class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class StorefrontClient:
    """
    Thin wrapper over the REST API.

    `session` can be a requests.Session or anything with the same `request`
    signature (FastAPI's TestClient, for instance). Every non-2xx response and
    every `success: false` envelope raises ApiError.
    """

    def __init__(self, base_url: str = DEFAULT_API_URL, session=None, token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.token = token

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = self.session.request(method, self.base_url + path, headers=headers, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(0, str(exc)) from exc
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400 or body.get("success") is False:
            raise ApiError(resp.status_code, body.get("error") or f"HTTP {resp.status_code}")
        return body

    # auth
    def login(self, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})["data"]
        self.token = data["token"]
        return data["user"]

    def signup(self, name: str, email: str, password: str) -> Dict[str, Any]:
        body = self._request("POST", "/api/users", json={"name": name, "email": email, "password": password})
        self.token = body.get("token")
        return body["data"]

    # catalog
    def list_products(self, **params) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/products", params=params)["data"]

    def get_product(self, product_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/products/{product_id}")["data"]

    def list_categories(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/categories")["data"]

    # site content
    def get_settings(self) -> SiteSettings:
        data = self._request("GET", "/api/settings")["data"]
        return SiteSettings(**{k: v for k, v in data.items() if k in SiteSettings.model_fields})

    def hero_slides(self, slide_type: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"type": slide_type} if slide_type else {}
        return self._request("GET", "/api/hero-slides", params=params)["data"]

    def review_gallery(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/review-gallery")["data"]

    # coupons
    def validate_coupon(self, code: str, cart_total: float) -> Dict[str, Any]:
        code = normalize_code(code)
        if not code:
            raise ValueError("Please enter a coupon code")
        return self._request(
            "PATCH", f"/api/coupons/{code}", json={"action": "validate", "cart_total": cart_total}
        )["data"]

    def use_coupon(self, coupon_id: str):
        self._request("PATCH", f"/api/coupons/{coupon_id}", json={"action": "use"})

    # orders
    def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/orders", json=payload)["data"]

    def list_orders(self, **params) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/orders", params=params)["data"]

    def get_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/orders/{order_id}")["data"]

    def update_order_status(self, order_id: str, status: str) -> Dict[str, Any]:
        return self._request("PATCH", f"/api/orders/{order_id}", json={"status": status})["data"]


# ----------------------- App state -----------------------
class AppState:
    """Everything a storefront session holds: catalog, cart, wishlist, settings and the applied coupon."""

    def __init__(self, storage: Optional[MutableMapping] = None):
        self.storage = storage if storage is not None else {}
        self.catalog = Catalog()
        self.cart = Cart(self.storage)
        self.wishlist = Wishlist(self.storage)
        self.settings = SiteSettings()
        self.coupon: Optional[Dict[str, Any]] = None

    def refresh(self, client: StorefrontClient):
        self.catalog.load(client)
        self.settings = client.get_settings()

    def apply_coupon(self, client: StorefrontClient, code: str) -> int:
        data = client.validate_coupon(code, self.cart.total_price)
        self.coupon = data["coupon"]
        return data["discount"]

    def remove_coupon(self):
        self.coupon = None

    @property
    def discount(self) -> int:
        """The applied coupon priced against the cart as it is now; 0 once it no longer applies."""
        if not self.coupon:
            return 0
        try:
            return evaluate_coupon(self.coupon, self.cart.total_price).discount
        except CouponRejected as exc:
            logger.info("Coupon %s no longer applies: %s", self.coupon.get("code"), exc.reason)
            return 0

    def order_summary(self) -> OrderTotals:
        return order_totals(self.cart.total_price, self.settings.shipping, self.discount)

    def checkout(self, client: StorefrontClient, customer: Mapping[str, Any]) -> Dict[str, Any]:
        """Place an order for the cart. `customer` holds customer_name, email, phone and shipping_address."""
        if not self.cart.items:
            raise ValueError("Your cart is empty")
        payload = {
            **customer,
            "items": [{"product_id": i.id, "quantity": i.quantity} for i in self.cart.items],
        }
        if self.coupon:
            payload["coupon_code"] = self.coupon["code"]
        order = client.create_order(payload)
        self.cart.clear()
        self.remove_coupon()
        return order
