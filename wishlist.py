# wishlist.py: saved products per customer
from datetime import datetime

from flask import Blueprint

from catalog import primary_image, products_col
from common import body_json, current_user, fail, login_required, ok, oid
from db import db

wishlist_bp = Blueprint("wishlist", __name__)

wishlists_col = db["wishlists"]  # { user_id, items: [ { product_id, added_at } ] }


def _items(user_id):
    doc = wishlists_col.find_one({"user_id": user_id}) or {}
    return doc.get("items") or []


def _save(user_id, items):
    wishlists_col.update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": datetime.utcnow()}},
        upsert=True,
    )


def _wishlist_response(user_id):
    items = _items(user_id)
    ids = [i["product_id"] for i in items]
    products = {p["_id"]: p for p in products_col.find(
        {"_id": {"$in": ids}}, {"name": 1, "slug": 1, "images": 1, "min_price": 1, "status": 1, "on_sale": 1},
    )} if ids else {}

    kept, out = [], []
    for it in items:
        p = products.get(it["product_id"])
        if not p:
            continue
        kept.append(it)
        out.append({
            "product_id": p["_id"],
            "added_at": it.get("added_at"),
            "product": {
                "_id": p["_id"], "name": p.get("name"), "slug": p.get("slug"),
                "price": p.get("min_price"), "image": primary_image(p),
                "status": p.get("status"), "on_sale": p.get("on_sale", False),
            },
        })
    if len(kept) != len(items):
        _save(user_id, kept)
    return ok({"items": out, "count": len(out)})


@wishlist_bp.route("/api/v1/wishlist", methods=["GET"])
@login_required
def get_wishlist():
    return _wishlist_response(current_user()["_id"])


@wishlist_bp.route("/api/v1/wishlist/add", methods=["POST"])
@login_required
def add_to_wishlist():
    uid = current_user()["_id"]
    data = body_json()
    product_id = oid(data.get("productId") or data.get("product_id"))
    if not product_id or not products_col.find_one({"_id": product_id}, {"_id": 1}):
        return fail("Product not found", 404)

    items = _items(uid)
    if any(i["product_id"] == product_id for i in items):
        return fail("Product already in wishlist")
    items.append({"product_id": product_id, "added_at": datetime.utcnow()})
    _save(uid, items)
    return _wishlist_response(uid)


@wishlist_bp.route("/api/v1/wishlist/<product_id>", methods=["DELETE"])
@login_required
def remove_from_wishlist(product_id):
    uid = current_user()["_id"]
    pid = oid(product_id)
    if not pid:
        return fail("Invalid product id")
    _save(uid, [i for i in _items(uid) if i["product_id"] != pid])
    return _wishlist_response(uid)


@wishlist_bp.route("/api/v1/wishlist", methods=["DELETE"])
@login_required
def clear_wishlist():
    uid = current_user()["_id"]
    _save(uid, [])
    return ok({"items": [], "count": 0})
