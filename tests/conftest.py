import os
import sys

import mongomock
import mongomock.gridfs
import pymongo
import pytest
from bson import ObjectId
from werkzeug.security import generate_password_hash

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# offline configuration: in-memory Mongo, Paystack dev mode, no outbound mail/SMS
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["PAYSTACK_SECRET_KEY"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["TERMII_API_KEY"] = ""
os.environ["ADMIN_EMAIL"] = ""
os.environ["SECRET_KEY"] = "test-secret"

pymongo.MongoClient = mongomock.MongoClient
mongomock.gridfs.enable_gridfs_integration()

from db import db  # noqa: E402
from app import app as flask_app  # noqa: E402

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def _clean_db():
    for name in db.list_collection_names():
        db[name].delete_many({})
    yield


@pytest.fixture()
def app():
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def admin_client(app):
    return app.test_client()


def make_user(email="ada@example.com", phone="08030000001", role="customer", status="active", **extra):
    doc = {
        "first_name": extra.pop("first_name", "Ada"),
        "last_name": extra.pop("last_name", "Obi"),
        "email": email,
        "phone": phone,
        "password": generate_password_hash(PASSWORD),
        "role": role,
        "status": status,
        "addresses": [],
        "total_spent": 0.0,
        "loyalty_tier": "Enthusiast",
        **extra,
    }
    doc["_id"] = db["users"].insert_one(doc).inserted_id
    return doc


def login(client, email, password=PASSWORD):
    r = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.get_json()
    return r


@pytest.fixture()
def customer(client):
    user = make_user()
    login(client, user["email"])
    return user


@pytest.fixture()
def admin(admin_client):
    user = make_user(email="boss@plugng.shop", phone="08030000099", role="admin",
                     first_name="Bola", last_name="Admin")
    login(admin_client, user["email"])
    return user


def make_category(name="Apple", slug=None, parent=None, level=1):
    doc = {
        "name": name,
        "slug": slug or name.lower().replace(" ", "-"),
        "parent": parent,
        "level": level,
        "order": 0,
        "active": True,
        "featured": False,
    }
    doc["_id"] = db["categories"].insert_one(doc).inserted_id
    return doc


def make_product(name="iPhone 15 Case", category=None, stock=20, price=5000.0, sku=None,
                 status="active", **extra):
    from catalog import derive_product_fields

    sku = sku or name.upper().replace(" ", "-")
    doc = {
        "name": name,
        "slug": name.lower().replace(" ", "-"),
        "description": f"{name} description",
        "category": category,
        "sub_category": None,
        "low_stock_threshold": 5,
        "images": [{"url": "/media/abc", "is_primary": True}],
        "options": [],
        "variants": [{
            "_id": ObjectId(),
            "sku": sku,
            "attribute_values": {},
            "cost_price": price / 2,
            "selling_price": price,
            "compare_at_price": None,
            "stock": stock,
        }],
        "specifications": [],
        "compatibility": {"brands": ["Apple"], "models": []},
        "status": status,
        "featured": False,
        "views": 0,
        "sales_count": 0,
        "wallet_only_discount": {"enabled": False, "percentage": 0, "valid_until": None},
        **extra,
    }
    doc.update(derive_product_fields(doc))
    doc["_id"] = db["products"].insert_one(doc).inserted_id
    return doc


ADDRESS = {
    "fullName": "Ada Obi",
    "phone": "08030000001",
    "address": "12 Allen Avenue",
    "city": "Ikeja",
    "state": "Lagos",
}


def place_order(client, product, qty=1, method="cash_on_delivery", **extra):
    r = client.post("/api/v1/cart/add", json={"productId": str(product["_id"]), "quantity": qty})
    assert r.status_code == 200
    r = client.post("/api/v1/orders", json={"shippingAddress": ADDRESS, "paymentMethod": method, **extra})
    assert r.status_code == 201, r.get_json()
    return r.get_json()["data"]
