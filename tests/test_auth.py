from db import db

from conftest import PASSWORD, login, make_user


def _register(client, **overrides):
    body = {
        "firstName": "Chidi",
        "lastName": "Eze",
        "email": "Chidi@Example.com",
        "phone": "+2348031234567",
        "password": "longenough",
        **overrides,
    }
    return client.post("/api/v1/auth/register", json=body)


def test_register_creates_customer_and_logs_in(client):
    r = _register(client)
    assert r.status_code == 201
    user = r.get_json()["data"]["user"]
    assert user["email"] == "chidi@example.com"
    assert user["phone"] == "08031234567"
    assert "password" not in user and "otp" not in user

    me = client.get("/api/v1/auth/me")
    assert me.status_code == 200
    assert me.get_json()["data"]["user"]["role"] == "customer"


def test_register_rejects_short_password_and_duplicates(client):
    assert _register(client, password="short").status_code == 400
    assert _register(client).status_code == 201
    dup = _register(client, email="other@example.com")
    assert dup.status_code == 400


def test_register_requires_all_fields(client):
    r = _register(client, lastName="")
    assert r.status_code == 400
    assert "Last name" in r.get_json()["error"]


def test_login_by_email_or_phone(client):
    make_user()
    r = client.post("/api/v1/auth/login", json={"emailOrPhone": "08030000001", "password": PASSWORD})
    assert r.status_code == 200
    assert r.get_json()["data"]["user"]["email"] == "ada@example.com"


def test_login_wrong_password_is_logged(client):
    make_user()
    r = client.post("/api/v1/auth/login", json={"email": "ada@example.com", "password": "nope-nope"})
    assert r.status_code == 401
    log = db["login_logs"].find_one({})
    assert log is not None and log["success"] is False


def test_login_missing_fields(client):
    assert client.post("/api/v1/auth/login", json={"email": "ada@example.com"}).status_code == 400


def test_suspended_user_cannot_login(client):
    make_user(status="suspended")
    r = client.post("/api/v1/auth/login", json={"email": "ada@example.com", "password": PASSWORD})
    assert r.status_code == 403


def test_suspension_clears_live_session(client, customer):
    assert client.get("/api/v1/auth/me").status_code == 200
    db["users"].update_one({"_id": customer["_id"]}, {"$set": {"status": "suspended"}})
    assert client.get("/api/v1/auth/me").status_code == 401
    assert client.get("/api/v1/cart").status_code == 401


def test_logout(client, customer):
    assert client.post("/api/v1/auth/logout").status_code == 200
    assert client.get("/api/v1/auth/me").status_code == 401


def test_otp_verify_and_expiry(client):
    _register(client)
    user = db["users"].find_one({"email": "chidi@example.com"})
    assert client.post("/api/v1/auth/verify", json={"otp": "not-a-code"}).status_code == 400
    r = client.post("/api/v1/auth/verify", json={"otp": user["otp"]})
    assert r.status_code == 200
    fresh = db["users"].find_one({"_id": user["_id"]})
    assert fresh["phone_verified"] is True
    assert not fresh.get("otp")
    assert "otp_attempts" not in fresh


def test_otp_locks_after_repeated_wrong_codes(client):
    _register(client)
    user = db["users"].find_one({"email": "chidi@example.com"})
    for _ in range(5):
        assert client.post("/api/v1/auth/verify", json={"otp": "000000x"}).status_code == 400
    r = client.post("/api/v1/auth/verify", json={"otp": user["otp"]})
    assert r.status_code == 429
    assert not db["users"].find_one({"_id": user["_id"]}).get("phone_verified")

    assert client.post("/api/v1/auth/resend-otp", json={}).status_code == 200
    otp = db["users"].find_one({"_id": user["_id"]})["otp"]
    assert client.post("/api/v1/auth/verify", json={"otp": otp}).status_code == 200


def test_customer_cannot_reach_admin_routes(client, customer):
    assert client.get("/api/v1/admin/orders").status_code == 403
    assert client.get("/api/v1/admin/activity").status_code == 403


def test_anonymous_gets_401(client):
    assert client.get("/api/v1/admin/orders").status_code == 401
    assert client.get("/api/v1/orders/my-orders").status_code == 401


def test_admin_login_logs(admin_client, admin, client):
    make_user(email="x@example.com", phone="08030000005")
    client.post("/api/v1/auth/login", json={"email": "x@example.com", "password": "bad-password"})
    r = admin_client.get("/api/v1/admin/login-logs?success=false")
    assert r.status_code == 200
    rows = r.get_json()["data"]
    assert rows and all(not row["success"] for row in rows)


def test_profile_address_flow(client, customer):
    addr = {"fullName": "Ada Obi", "phone": "0803", "address": "1 Road", "city": "Ikeja", "state": "Lagos"}
    r = client.post("/api/v1/users/address", json=addr)
    assert r.status_code == 201
    first = r.get_json()["data"][0]
    assert first["is_default"] is True

    r = client.post("/api/v1/users/address", json={**addr, "isDefault": True, "address": "2 Road"})
    addresses = r.get_json()["data"]
    assert [a["is_default"] for a in addresses] == [False, True]

    r = client.patch(f"/api/v1/users/address/{first['_id']}/default")
    assert [a["is_default"] for a in r.get_json()["data"]] == [True, False]

    r = client.delete(f"/api/v1/users/address/{first['_id']}")
    remaining = r.get_json()["data"]
    assert len(remaining) == 1 and remaining[0]["is_default"] is True


def test_change_password(client, customer):
    bad = client.patch("/api/v1/users/password", json={"currentPassword": "wrong", "newPassword": "newsecret1"})
    assert bad.status_code == 401
    r = client.patch("/api/v1/users/password", json={"currentPassword": PASSWORD, "newPassword": "newsecret1"})
    assert r.status_code == 200
    client.post("/api/v1/auth/logout")
    login(client, customer["email"], "newsecret1")
