# cart_api.py: the shopper's cart, synced with live product prices
from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from flask import Blueprint

from catalog import find_variant, primary_image, products_col
from common import _to_int, body_json, current_user, fail, login_required, ok, oid
from db import db

cart_api_bp = Blueprint("cart_api", __name__)

carts_col = db["carts"]  # { user_id, items: [ { _id, product_id, variant_id, quantity, ... } ], updated_at }


def _get_cart(user_id) -> dict:
    cart = carts_col.find_one({"user_id": user_id})
    if not cart:
        cart = {"user_id": user_id, "items": [], "created_at": datetime.utcnow()}
    return cart


def _save_items(user_id, items: List[dict]):
    carts_col.update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": datetime.utcnow()},
         "$setOnInsert": {"created_at": datetime.utcnow()}},
        upsert=True,
    )


def _same_line(item: dict, product_id: ObjectId, variant_id: Optional[str]) -> bool:
    return item.get("product_id") == product_id and (item.get("variant_id") or None) == (variant_id or None)


def _line_key(data: dict):
    product_id = oid(data.get("productId") or data.get("product_id") or data.get("id"))
    variant_id = data.get("variantId") or data.get("variant_id") or None
    return product_id, (str(variant_id) if variant_id else None)


def _populate(user_id, items: List[dict]) -> List[dict]:
    """Attach product data to cart lines; lines whose product vanished are dropped and persisted."""
    ids = list({i["product_id"] for i in items})
    products = {p["_id"]: p for p in products_col.find({"_id": {"$in": ids}})} if ids else {}
    kept, out = [], []
    for it in items:
        p = products.get(it["product_id"])
        if not p:
            continue
        kept.append(it)
        variant = find_variant(p, variant_id=it.get("variant_id")) if it.get("variant_id") else None
        if variant is None and p.get("variants"):
            variant = p["variants"][0]
        variant = variant or {}
        out.append({
            **it,
            "product": {
                "_id": p["_id"],
                "name": p.get("name"),
                "slug": p.get("slug"),
                "image": variant.get("image") or primary_image(p),
                "status": p.get("status"),
                "wallet_only_discount": p.get("wallet_only_discount"),
            },
            "variant": {
                "_id": variant.get("_id"),
                "sku": variant.get("sku"),
                "attribute_values": variant.get("attribute_values"),
                "stock": variant.get("stock"),
            },
            "price": variant.get("selling_price"),
            "compare_at_price": variant.get("compare_at_price"),
        })
    if len(kept) != len(items):
        _save_items(user_id, kept)
    return out


def _cart_response(user_id):
    cart = _get_cart(user_id)
    lines = _populate(user_id, cart.get("items") or [])
    subtotal = round(sum(float(l.get("price") or 0) * int(l.get("quantity") or 0) for l in lines), 2)
    return ok({
        "_id": cart.get("_id"),
        "items": lines,
        "count": sum(int(l.get("quantity") or 0) for l in lines),
        "subtotal": subtotal,
    })


# ---------- API ----------

@cart_api_bp.route("/api/v1/cart", methods=["GET"])
@login_required
def get_cart():
    return _cart_response(current_user()["_id"])


@cart_api_bp.route("/api/v1/cart/add", methods=["POST"])
@login_required
def add_to_cart():
    uid = current_user()["_id"]
    data = body_json()
    product_id, variant_id = _line_key(data)
    quantity = _to_int(data.get("quantity"), 1)
    if not product_id:
        return fail("Product ID is required")
    if quantity is None or quantity < 1:
        return fail("Quantity must be at least 1")

    product = products_col.find_one({"_id": product_id})
    if not product:
        return fail("Product not found", 404)
    if variant_id and not find_variant(product, variant_id=variant_id):
        return fail("Variant not found", 404)

    items = _get_cart(uid).get("items") or []
    for it in items:
        if _same_line(it, product_id, variant_id):
            it["quantity"] = int(it.get("quantity") or 0) + quantity
            break
    else:
        items.append({
            "_id": ObjectId(),
            "product_id": product_id,
            "variant_id": variant_id,
            "quantity": quantity,
            "selected_options": data.get("selectedOptions") or {},
            "added_at": datetime.utcnow(),
        })
    _save_items(uid, items)
    return _cart_response(uid)


@cart_api_bp.route("/api/v1/cart/update", methods=["PUT", "PATCH"])
@login_required
def update_cart_item():
    uid = current_user()["_id"]
    data = body_json()
    product_id, variant_id = _line_key(data)
    quantity = _to_int(data.get("quantity"))
    if not product_id or quantity is None:
        return fail("Product ID and quantity are required")

    items = _get_cart(uid).get("items") or []
    idx = next((i for i, it in enumerate(items) if _same_line(it, product_id, variant_id)), None)
    if idx is None:
        return fail("Item not found in cart", 404)
    if quantity <= 0:
        items.pop(idx)
    else:
        items[idx]["quantity"] = quantity
    _save_items(uid, items)
    return _cart_response(uid)


@cart_api_bp.route("/api/v1/cart/remove", methods=["POST", "DELETE"])
@login_required
def remove_cart_item():
    uid = current_user()["_id"]
    product_id, variant_id = _line_key(body_json())
    if not product_id:
        return fail("Product ID is required")
    items = [it for it in (_get_cart(uid).get("items") or []) if not _same_line(it, product_id, variant_id)]
    _save_items(uid, items)
    return _cart_response(uid)


@cart_api_bp.route("/api/v1/cart/sync", methods=["POST"])
@login_required
def sync_cart():
    """Merge a guest (local storage) cart into the server cart."""
    uid = current_user()["_id"]
    local_items = body_json().get("items")
    if not isinstance(local_items, list):
        return fail("items must be an array")

    items = _get_cart(uid).get("items") or []
    for raw in local_items:
        if not isinstance(raw, dict):
            continue
        product_id, variant_id = _line_key(raw)
        qty = _to_int(raw.get("quantity"), 1) or 0
        if not product_id or qty < 1 or not products_col.find_one({"_id": product_id}, {"_id": 1}):
            continue
        for it in items:
            if _same_line(it, product_id, variant_id):
                it["quantity"] = int(it.get("quantity") or 0) + qty
                break
        else:
            items.append({
                "_id": ObjectId(),
                "product_id": product_id,
                "variant_id": variant_id,
                "quantity": qty,
                "selected_options": raw.get("selectedOptions") or {},
                "added_at": datetime.utcnow(),
            })
    _save_items(uid, items)
    return _cart_response(uid)


@cart_api_bp.route("/api/v1/cart/clear", methods=["POST", "DELETE"])
@login_required
def clear_cart():
    uid = current_user()["_id"]
    _save_items(uid, [])
    return ok({"items": [], "count": 0, "subtotal": 0.0})


def clear_user_cart(user_id):
    carts_col.update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": datetime.utcnow()}})
