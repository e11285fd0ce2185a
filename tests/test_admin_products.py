import io
import json

from db import db

from conftest import make_category, make_product

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _body(category, /, **overrides):
    body = {
        "name": "Anker 20W Charger",
        "description": "Fast USB-C charger",
        "category": str(category["_id"]),
        "variants": [
            {"sku": "ank-20w-wht", "selling_price": 15000, "cost_price": 9000, "stock": 12,
             "attribute_values": {"Color": "White"}},
            {"sku": "ANK-20W-BLK", "selling_price": 14000, "cost_price": 9000, "stock": 0,
             "attribute_values": {"Color": "Black"}},
        ],
        "compatibility": {"brands": ["Apple", ""], "models": ["iPhone 15"]},
    }
    body.update(overrides)
    return body


def test_create_product_derives_fields_and_slug(admin_client, admin):
    cat = make_category("Chargers")
    r = admin_client.post("/api/v1/admin/products", json=_body(cat))
    assert r.status_code == 201
    p = r.get_json()["data"]
    assert p["slug"] == "anker-20w-charger"
    assert p["variants"][0]["sku"] == "ANK-20W-WHT"
    assert p["min_price"] == 14000 and p["total_stock"] == 12
    assert p["compatibility"]["brands"] == ["Apple"]
    assert db["admin_activities"].count_documents({"action": "create", "resource": "product"}) == 1

    r = admin_client.post("/api/v1/admin/products",
                          json=_body(cat, variants=[{"sku": "OTHER", "selling_price": 1, "cost_price": 1, "stock": 1}]))
    assert r.get_json()["data"]["slug"] == "anker-20w-charger-2"


def test_create_validation(admin_client, admin):
    cat = make_category("Chargers")
    assert admin_client.post("/api/v1/admin/products", json=_body(cat, name="")).status_code == 400
    assert admin_client.post("/api/v1/admin/products", json=_body(cat, category="0" * 24)).status_code == 404
    assert admin_client.post("/api/v1/admin/products", json=_body(cat, variants=[])).status_code == 400

    dup = _body(cat)
    dup["variants"][1]["sku"] = "ANK-20W-WHT"
    r = admin_client.post("/api/v1/admin/products", json=dup)
    assert r.status_code == 400 and "Duplicate SKU" in r.get_json()["error"]

    neg = _body(cat)
    neg["variants"][0]["stock"] = -1
    assert admin_client.post("/api/v1/admin/products", json=neg).status_code == 400

    make_product("Existing", sku="ANK-20W-WHT")
    r = admin_client.post("/api/v1/admin/products", json=_body(cat))
    assert "already used by Existing" in r.get_json()["error"]

    r = admin_client.post("/api/v1/admin/products",
                          json=_body(cat, name="Other", variants=[{"sku": "Z1", "selling_price": 1, "cost_price": 1, "stock": 1}],
                                     wallet_only_discount={"enabled": True, "percentage": 75}))
    assert r.status_code == 400


def test_product_without_stock_is_out_of_stock(admin_client, admin):
    cat = make_category("Chargers")
    body = _body(cat, variants=[{"sku": "NONE", "selling_price": 10, "cost_price": 5, "stock": 0}])
    assert admin_client.post("/api/v1/admin/products", json=body).get_json()["data"]["status"] == "out_of_stock"


def test_update_logs_diff(admin_client, admin):
    p = make_product("Old Name")
    r = admin_client.patch(f"/api/v1/admin/products/{p['_id']}", json={"name": "New Name", "featured": True})
    assert r.status_code == 200
    assert r.get_json()["data"]["name"] == "New Name"
    log = db["admin_activities"].find_one({"action": "update"})
    assert log["changes"]["before"]["name"] == "Old Name"
    assert log["changes"]["after"]["featured"] is True

    assert admin_client.patch(f"/api/v1/admin/products/{p['_id']}", json={}).status_code == 400
    assert admin_client.patch(f"/api/v1/admin/products/{p['_id']}", json={"status": "gone"}).status_code == 400
    assert admin_client.patch("/api/v1/admin/products/" + "0" * 24, json={"name": "x"}).status_code == 404


def test_delete_and_list(admin_client, admin):
    a = make_product("Case A", status="draft")
    make_product("Case B")
    body = admin_client.get("/api/v1/admin/products?status=draft").get_json()
    assert [p["name"] for p in body["data"]] == ["Case A"]
    assert admin_client.get("/api/v1/admin/products?search=case-b").get_json()["meta"]["total"] == 1

    assert admin_client.delete(f"/api/v1/admin/products/{a['_id']}").status_code == 200
    assert admin_client.get(f"/api/v1/admin/products/{a['_id']}").status_code == 404


def test_bulk_update(admin_client, admin):
    a, b = make_product("Case A"), make_product("Case B")
    ids = [str(a["_id"]), str(b["_id"])]
    r = admin_client.patch("/api/v1/admin/products/bulk-update", json={"productIds": ids, "updates": {"featured": True}})
    assert r.get_json()["data"]["modifiedCount"] == 2
    assert db["products"].count_documents({"featured": True}) == 2

    r = admin_client.patch("/api/v1/admin/products/bulk-update", json={"productIds": ids, "updates": {"name": "x"}})
    assert r.status_code == 400


def test_multipart_create_stores_images_in_gridfs(admin_client, admin, client):
    cat = make_category("Chargers")
    r = admin_client.post(
        "/api/v1/admin/products",
        data={"data": json.dumps(_body(cat)), "images": (io.BytesIO(PNG), "front.png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    images = r.get_json()["data"]["images"]
    assert len(images) == 1 and images[0]["is_primary"] is True
    assert images[0]["alt"] == "front"

    r = client.get(images[0]["url"])
    assert r.status_code == 200
    assert r.data == PNG
    assert client.get("/media/" + "0" * 24).status_code == 404


def test_media_upload_rejects_bad_types(admin_client, admin):
    r = admin_client.post("/api/v1/admin/media/upload",
                          data={"images": (io.BytesIO(b"MZ"), "evil.exe")}, content_type="multipart/form-data")
    assert r.status_code == 400
    assert admin_client.post("/api/v1/admin/media/upload", data={}, content_type="multipart/form-data").status_code == 400

    r = admin_client.post("/api/v1/admin/media/upload",
                          data={"images": [(io.BytesIO(PNG), "a.png"), (io.BytesIO(PNG), "b.jpg")]},
                          content_type="multipart/form-data")
    assert r.status_code == 201
    assert len(r.get_json()["urls"]) == 2


def test_inventory_adjust_and_overview(admin_client, admin):
    p = make_product("Cable", stock=10)
    sku = p["variants"][0]["sku"]

    r = admin_client.post("/api/v1/admin/inventory/adjust",
                          json={"productId": str(p["_id"]), "type": "damaged", "quantity": 8, "note": "water"})
    assert r.get_json()["adjustment"] == {"sku": sku, "type": "damaged", "before": 10, "after": 2}

    r = admin_client.post("/api/v1/admin/inventory/adjust",
                          json={"productId": str(p["_id"]), "type": "correction", "quantity": 0})
    assert r.get_json()["data"]["status"] == "out_of_stock"

    r = admin_client.post("/api/v1/admin/inventory/adjust",
                          json={"productId": str(p["_id"]), "type": "restock", "quantity": 4})
    assert r.get_json()["data"]["status"] == "active"

    assert admin_client.post("/api/v1/admin/inventory/adjust",
                             json={"productId": str(p["_id"]), "type": "steal", "quantity": 1}).status_code == 400
    assert admin_client.post("/api/v1/admin/inventory/adjust",
                             json={"productId": str(p["_id"]), "type": "restock", "quantity": 0}).status_code == 400
    assert admin_client.post("/api/v1/admin/inventory/adjust",
                             json={"productId": str(p["_id"]), "type": "restock", "quantity": 1,
                                   "sku": "NOPE"}).status_code == 404

    data = admin_client.get("/api/v1/admin/inventory/overview").get_json()["data"]
    assert data["totals"]["units"] == 4
    assert data["totals"]["lowStock"] == 1
    assert data["products"][0]["variants"][0]["flag"] == "low"
    assert data["adjustmentsByReason"] == {"damaged": 1, "correction": 1, "restock": 1}
    assert len(data["recentAdjustments"]) == 3
    assert db["admin_activities"].count_documents({"action": "inventory_adjust"}) == 3
