from db import db

from conftest import make_product


def test_add_merges_same_line(client, customer):
    p = make_product()
    client.post("/api/v1/cart/add", json={"productId": str(p["_id"]), "quantity": 2})
    r = client.post("/api/v1/cart/add", json={"productId": str(p["_id"]), "quantity": 1})
    data = r.get_json()["data"]
    assert len(data["items"]) == 1
    assert data["count"] == 3
    assert data["subtotal"] == 15000


def test_add_validation(client, customer):
    p = make_product()
    assert client.post("/api/v1/cart/add", json={"productId": str(p["_id"]), "quantity": 0}).status_code == 400
    assert client.post("/api/v1/cart/add", json={"productId": "0" * 24}).status_code == 404
    assert client.post("/api/v1/cart/add", json={}).status_code == 400


def test_update_and_remove(client, customer):
    p = make_product()
    pid = str(p["_id"])
    client.post("/api/v1/cart/add", json={"productId": pid, "quantity": 2})
    r = client.put("/api/v1/cart/update", json={"productId": pid, "quantity": 5})
    assert r.get_json()["data"]["count"] == 5

    r = client.put("/api/v1/cart/update", json={"productId": pid, "quantity": 0})
    assert r.get_json()["data"]["items"] == []
    assert client.put("/api/v1/cart/update", json={"productId": pid, "quantity": 1}).status_code == 404

    client.post("/api/v1/cart/add", json={"productId": pid})
    r = client.post("/api/v1/cart/remove", json={"productId": pid})
    assert r.get_json()["data"]["items"] == []


def test_sync_merges_local_items(client, customer):
    a = make_product("Case A")
    b = make_product("Case B")
    client.post("/api/v1/cart/add", json={"productId": str(a["_id"]), "quantity": 1})
    r = client.post("/api/v1/cart/sync", json={"items": [
        {"id": str(a["_id"]), "quantity": 2},
        {"id": str(b["_id"]), "quantity": 1},
        {"id": "0" * 24, "quantity": 1},
    ]})
    items = {i["product"]["name"]: i["quantity"] for i in r.get_json()["data"]["items"]}
    assert items == {"Case A": 3, "Case B": 1}


def test_vanished_products_are_dropped(client, customer):
    p = make_product()
    client.post("/api/v1/cart/add", json={"productId": str(p["_id"])})
    db["products"].delete_one({"_id": p["_id"]})
    assert client.get("/api/v1/cart").get_json()["data"]["items"] == []
    assert db["carts"].find_one({"user_id": customer["_id"]})["items"] == []


def test_clear(client, customer):
    p = make_product()
    client.post("/api/v1/cart/add", json={"productId": str(p["_id"])})
    r = client.post("/api/v1/cart/clear")
    assert r.status_code == 200
    assert client.get("/api/v1/cart").get_json()["data"]["items"] == []


def test_wishlist(client, customer):
    p = make_product()
    pid = str(p["_id"])
    r = client.post("/api/v1/wishlist/add", json={"productId": pid})
    assert r.get_json()["data"]["count"] == 1
    assert client.post("/api/v1/wishlist/add", json={"productId": pid}).status_code == 400
    assert client.post("/api/v1/wishlist/add", json={"productId": "0" * 24}).status_code == 404

    r = client.delete(f"/api/v1/wishlist/{pid}")
    assert r.get_json()["data"]["count"] == 0
