from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import create_document
from schemas import Coupon, Product, User


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def client(db):
    main.app.dependency_overrides[main.get_db] = lambda: db
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


def make_user(db, email, role="user", password="secret123", name="Test User"):
    return create_document(db, "user", User(
        name=name,
        email=email,
        password_hash=main.hash_password(password),
        role=role,
    ))


def auth_headers(user_id, email, role):
    token = main.create_token({"id": user_id, "email": email, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(db):
    uid = make_user(db, "admin@shop.com", role="admin", name="Admin")
    return auth_headers(uid, "admin@shop.com", "admin")


@pytest.fixture
def user_headers(db):
    uid = make_user(db, "jane@example.com", name="Jane")
    return auth_headers(uid, "jane@example.com", "user")


@pytest.fixture
def other_user_headers(db):
    uid = make_user(db, "bob@example.com", name="Bob")
    return auth_headers(uid, "bob@example.com", "user")


@pytest.fixture
def make_product(db):
    def _make(name="Headphones", price=1000, **extra):
        data = {"category": "Audio", "stock": 10, **extra}
        return create_document(db, "product", Product(name=name, price=price, **data))
    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE10", **extra):
        data = {
            "discount_type": "percentage",
            "discount_value": 10,
            "expiry_date": datetime.now(timezone.utc) + timedelta(days=30),
            **extra,
        }
        return create_document(db, "coupon", Coupon(code=code, **data))
    return _make


SHIPPING_ADDRESS = {
    "street": "12 Lake Road",
    "city": "Dhaka",
    "state": "Dhaka",
    "zip": "1207",
    "country": "Bangladesh",
}


def order_payload(items, **extra):
    return {
        "customer_name": "Jane",
        "email": "jane@example.com",
        "phone": "01700000000",
        "shipping_address": SHIPPING_ADDRESS,
        "items": items,
        **extra,
    }
