from datetime import datetime, timedelta

import checkout
import paystack
import pytest
from db import db

from checkout import expire_stale_payments
from conftest import ADDRESS, make_product
from wallet import credit_wallet


def _fill_cart(client, product, qty=1):
    r = client.post("/api/v1/cart/add", json={"productId": str(product["_id"]), "quantity": qty})
    assert r.status_code == 200


def _order(client, method="card", **extra):
    return client.post("/api/v1/orders", json={"shippingAddress": ADDRESS, "paymentMethod": method, **extra})


def test_card_order_in_dev_mode_is_paid_and_processing(client, customer):
    p = make_product(stock=10, price=2000)
    _fill_cart(client, p, 2)
    r = _order(client)
    assert r.status_code == 201
    body = r.get_json()
    order = body["data"]
    assert body["devMode"] is True
    assert body["reference"] == order["order_number"]
    assert order["payment_status"] == "paid"
    assert order["delivery_status"] == "processing"
    assert order["total"] == 4000 + 1200
    assert [e["status"] for e in order["tracking_events"]] == ["pending", "processing"]

    product = db["products"].find_one({"_id": p["_id"]})
    assert product["variants"][0]["stock"] == 8
    assert product["sales_count"] == 2
    assert db["carts"].find_one({"user_id": customer["_id"]})["items"] == []
    user = db["users"].find_one({"_id": customer["_id"]})
    assert user["total_spent"] == 5200
    assert db["notifications"].count_documents({"recipient": customer["_id"], "type": "payment_success"}) == 1


def test_empty_cart_and_bad_input(client, customer):
    assert _order(client).status_code == 400
    p = make_product()
    _fill_cart(client, p)
    assert _order(client, method="bitcoin").status_code == 400
    r = client.post("/api/v1/orders", json={"shippingAddress": {"fullName": "A"}, "paymentMethod": "card"})
    assert r.status_code == 400


def test_insufficient_stock(client, customer):
    p = make_product(stock=1)
    _fill_cart(client, p, 3)
    r = _order(client)
    assert r.status_code == 400
    assert "Insufficient stock" in r.get_json()["error"]
    assert db["orders"].count_documents({}) == 0


def test_stock_reaching_zero_marks_out_of_stock(client, customer):
    p = make_product(stock=2)
    _fill_cart(client, p, 2)
    _order(client)
    product = db["products"].find_one({"_id": p["_id"]})
    assert product["status"] == "out_of_stock"
    assert product["total_stock"] == 0


def test_wallet_payment_debits_balance(client, customer):
    p = make_product(price=3000)
    credit_wallet(customer["_id"], 10000, "seed", "SEED-1")
    _fill_cart(client, p)
    r = _order(client, method="wallet")
    assert r.status_code == 201
    body = r.get_json()
    assert body["data"]["payment_status"] == "paid"
    assert body["walletBalance"] == 10000 - 4200
    debit = db["transactions"].find_one({"type": "debit"})
    assert debit["description"] == f"Purchase: {body['data']['order_number']}"


def test_wallet_insufficient_balance_deletes_order(client, customer):
    p = make_product(price=3000)
    _fill_cart(client, p)
    r = _order(client, method="wallet")
    assert r.status_code == 400
    assert db["orders"].count_documents({}) == 0
    assert len(db["carts"].find_one({"user_id": customer["_id"]})["items"]) == 1


def test_cod_order_stays_pending_without_touching_stock(client, customer):
    p = make_product(stock=5)
    _fill_cart(client, p, 2)
    order = _order(client, method="cash_on_delivery").get_json()["data"]
    assert order["payment_status"] == "pending"
    assert order["delivery_status"] == "pending"
    assert db["products"].find_one({"_id": p["_id"]})["variants"][0]["stock"] == 5


def test_coupon_applied_and_usage_counted(client, customer):
    db["coupons"].insert_one({
        "code": "SAVE10", "type": "percentage", "value": 10, "min_order_amount": 0,
        "max_discount_amount": 0, "expiry_date": datetime.utcnow() + timedelta(days=5),
        "usage_limit": 0, "usage_count": 0, "limit_per_user": 0, "is_active": True,
    })
    p = make_product(price=10000)
    _fill_cart(client, p)
    order = _order(client, couponCode="save10").get_json()["data"]
    assert order["coupon_code"] == "SAVE10"
    assert order["discount"] == 1000
    assert order["total"] == 10000 - 1000
    assert db["coupons"].find_one({"code": "SAVE10"})["usage_count"] == 1


def test_unusable_coupon_is_ignored(client, customer):
    db["coupons"].insert_one({
        "code": "OLD", "type": "fixed", "value": 500, "expiry_date": datetime.utcnow() - timedelta(days=1),
        "usage_count": 0, "is_active": True,
    })
    p = make_product(price=2000)
    _fill_cart(client, p)
    order = _order(client, couponCode="OLD").get_json()["data"]
    assert order["coupon_code"] is None
    assert order["discount"] == 0


def test_verify_is_idempotent(client, customer):
    p = make_product(stock=10)
    _fill_cart(client, p, 1)
    order = _order(client, method="cash_on_delivery").get_json()["data"]
    db["orders"].update_one({"order_number": order["order_number"]}, {"$set": {"payment_method": "card"}})

    for _ in range(2):
        r = client.get(f"/api/v1/orders/verify?reference={order['order_number']}")
        assert r.status_code == 200
        assert r.get_json()["data"]["payment_status"] == "paid"
    assert db["products"].find_one({"_id": p["_id"]})["variants"][0]["stock"] == 9


def test_verify_requires_reference(client, customer):
    assert client.get("/api/v1/orders/verify").status_code == 400
    assert client.get("/api/v1/orders/verify?reference=ORD-nope").status_code == 404


def test_live_gateway_initialize_and_failure(client, customer, monkeypatch):
    monkeypatch.setattr(paystack, "PAYSTACK_SECRET_KEY", "sk_live_real")
    calls = {}

    def fake_init(email, amount, reference, callback_url, metadata=None):
        calls["amount"] = amount
        return {"authorization_url": "https://checkout.paystack.com/x", "access_code": "ac_1"}

    monkeypatch.setattr(paystack, "initialize_transaction", fake_init)
    p = make_product(price=2000)
    _fill_cart(client, p)
    body = _order(client).get_json()
    assert body["paymentUrl"] == "https://checkout.paystack.com/x"
    assert body["data"]["payment_status"] == "pending"
    assert calls["amount"] == 3200

    def failing_init(*a, **kw):
        raise paystack.PaystackError("down")

    monkeypatch.setattr(paystack, "initialize_transaction", failing_init)
    _fill_cart(client, p)
    r = _order(client)
    assert r.status_code == 502
    assert db["orders"].count_documents({}) == 1


@pytest.mark.parametrize("status,expected_code", [("success", 200), ("failed", 400)])
def test_live_verify(client, customer, monkeypatch, status, expected_code):
    monkeypatch.setattr(paystack, "PAYSTACK_SECRET_KEY", "sk_live_real")
    monkeypatch.setattr(paystack, "initialize_transaction",
                        lambda *a, **kw: {"authorization_url": "u", "access_code": "c"})
    p = make_product(price=2000)
    _fill_cart(client, p)
    order = _order(client).get_json()["data"]

    def fake_verify(reference):
        if status != "success":
            raise paystack.PaystackError("Transaction not successful")
        return {"status": "success", "amount": 320000, "reference": reference, "id": 1, "channel": "card"}

    monkeypatch.setattr(paystack, "verify_transaction", fake_verify)
    r = client.get(f"/api/v1/orders/verify?reference={order['order_number']}")
    assert r.status_code == expected_code


def test_expire_stale_payments(client, customer, monkeypatch):
    monkeypatch.setattr(paystack, "PAYSTACK_SECRET_KEY", "sk_live_real")
    monkeypatch.setattr(paystack, "initialize_transaction",
                        lambda *a, **kw: {"authorization_url": "u", "access_code": "c"})
    p = make_product()
    _fill_cart(client, p)
    order = _order(client).get_json()["data"]
    assert expire_stale_payments() == 0
    assert expire_stale_payments(datetime.utcnow() + timedelta(hours=25)) == 1
    assert db["orders"].find_one({"order_number": order["order_number"]})["payment_status"] == "failed"


def test_my_orders_and_cancel(client, customer):
    p = make_product()
    _fill_cart(client, p)
    order = _order(client, method="cash_on_delivery").get_json()["data"]

    r = client.get("/api/v1/orders/my-orders?status=pending")
    assert r.get_json()["meta"]["total"] == 1
    assert client.get(f"/api/v1/orders/{order['_id']}").status_code == 200
    assert client.get("/api/v1/orders/" + "0" * 24).status_code == 404

    r = client.post(f"/api/v1/orders/{order['_id']}/cancel")
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["delivery_status"] == "cancelled" and data["payment_status"] == "failed"
    assert client.post(f"/api/v1/orders/{order['_id']}/cancel").status_code == 400


def test_paid_order_cannot_be_cancelled_by_customer(client, customer):
    p = make_product()
    _fill_cart(client, p)
    order = _order(client).get_json()["data"]
    assert client.post(f"/api/v1/orders/{order['_id']}/cancel").status_code == 400


def test_payment_deducting_to_threshold_alerts_admins(client, customer, admin):
    low = make_product(name="MagSafe Charger", stock=7)
    plenty = make_product(name="USB-C Cable", stock=20)
    _fill_cart(client, low, 2)
    _fill_cart(client, plenty, 1)
    _order(client)

    alerts = list(db["notifications"].find({"recipient": admin["_id"], "type": "low_stock"}))
    assert len(alerts) == 1
    assert alerts[0]["metadata"]["sku"] == "MAGSAFE-CHARGER"
    assert alerts[0]["metadata"]["stock"] == 5
    assert db["notifications"].count_documents({"recipient": customer["_id"], "type": "low_stock"}) == 0


def test_admin_verify_emails_the_order_owner(client, customer, admin_client, admin, monkeypatch):
    monkeypatch.setattr(paystack, "PAYSTACK_SECRET_KEY", "sk_live_real")
    monkeypatch.setattr(paystack, "initialize_transaction",
                        lambda *a, **kw: {"authorization_url": "u", "access_code": "c"})
    p = make_product(price=2000)
    _fill_cart(client, p)
    order = _order(client).get_json()["data"]

    sent = []
    monkeypatch.setattr(checkout, "send_email", lambda to, subject, html: sent.append(to))
    monkeypatch.setattr(paystack, "verify_transaction", lambda ref: {
        "status": "success", "amount": 320000, "reference": ref, "id": 1, "channel": "card",
    })
    r = admin_client.get(f"/api/v1/orders/verify?reference={order['order_number']}")
    assert r.status_code == 200
    assert sent == [customer["email"]]
