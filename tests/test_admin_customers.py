from db import db

from conftest import login, make_product, make_user, place_order
from wallet import get_balance


def test_list_and_search_customers(customer, admin_client, admin):
    make_user(email="tunde@example.com", phone="08030000002", first_name="Tunde", status="suspended")
    body = admin_client.get("/api/v1/admin/customers").get_json()
    assert body["meta"]["total"] == 2
    assert all("password" not in c for c in body["data"])

    assert admin_client.get("/api/v1/admin/customers?search=tunde").get_json()["meta"]["total"] == 1
    active = admin_client.get("/api/v1/admin/customers?status=active").get_json()["data"]
    assert [c["email"] for c in active] == ["ada@example.com"]


def test_customer_detail_totals(client, customer, admin_client, admin):
    order = place_order(client, make_product(price=2000), method="card")
    place_order(client, make_product("Other", price=2000))
    admin_client.patch(f"/api/v1/admin/orders/{order['_id']}/status", json={"status": "delivered"})

    data = admin_client.get(f"/api/v1/admin/customers/{customer['_id']}").get_json()["data"]
    assert data["order_count"] == 2
    assert data["total_spent"] == 3200
    assert admin_client.get(f"/api/v1/admin/customers/{admin['_id']}").status_code == 404


def test_wallet_credit_and_floored_debit(customer, admin_client, admin):
    url = f"/api/v1/admin/customers/{customer['_id']}/wallet"
    assert admin_client.patch(url, json={"type": "credit", "amount": 500}).status_code == 400
    assert admin_client.patch(url, json={"type": "gift", "amount": 500, "reason": "x"}).status_code == 400
    assert admin_client.patch(url, json={"type": "credit", "amount": -1, "reason": "x"}).status_code == 400

    r = admin_client.patch(url, json={"type": "credit", "amount": 1000, "reason": "Goodwill"})
    data = r.get_json()["data"]
    assert data["balance"] == 1000 and data["reference"].startswith("ADM-")

    r = admin_client.patch(url, json={"type": "debit", "amount": 5000, "reason": "Chargeback"})
    assert r.get_json()["data"]["amount"] == 1000
    assert get_balance(customer["_id"]) == 0
    assert db["transactions"].count_documents({"category": "admin_adjust"}) == 2
    assert db["admin_activities"].count_documents({"action": "wallet_adjust"}) == 2


def test_suspend_customer(client, customer, admin_client, admin):
    r = admin_client.patch(f"/api/v1/admin/customers/{customer['_id']}/status", json={"status": "suspended"})
    assert r.get_json()["data"]["status"] == "suspended"
    assert client.get("/api/v1/auth/me").status_code == 401
    user = db["users"].find_one({"_id": customer["_id"]})
    assert user["status_history"][0]["to"] == "suspended"
    assert admin_client.patch(f"/api/v1/admin/customers/{customer['_id']}/status",
                              json={"status": "banned"}).status_code == 400


def test_admin_accounts(admin_client, admin, client):
    body = {"firstName": "Sola", "lastName": "Ops", "email": "sola@plugng.shop",
            "phone": "08030000050", "password": "longenough", "role": "support"}
    r = admin_client.post("/api/v1/admin/admins", json=body)
    assert r.status_code == 201
    new_admin = r.get_json()["data"]
    assert new_admin["role"] == "support"
    assert admin_client.post("/api/v1/admin/admins", json=body).status_code == 400
    assert admin_client.post("/api/v1/admin/admins", json={**body, "email": "x@y.z", "phone": "1",
                                                            "role": "god"}).status_code == 400

    login(client, "sola@plugng.shop", "longenough")
    assert client.get("/api/v1/admin/orders").status_code == 200

    assert admin_client.get("/api/v1/admin/admins").get_json()["meta"]["total"] == 2
    r = admin_client.patch(f"/api/v1/admin/admins/{new_admin['_id']}/status", json={"status": "suspended"})
    assert r.status_code == 200
    assert client.get("/api/v1/admin/orders").status_code == 401
    assert admin_client.patch(f"/api/v1/admin/admins/{admin['_id']}/status",
                              json={"status": "suspended"}).status_code == 400
