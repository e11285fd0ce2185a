# admin_products.py: products CRUD, media upload, inventory overview + adjustments
from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from flask import Blueprint, request
from pymongo import ReturnDocument

from activity import log_activity, snapshot
from catalog import PRODUCT_STATUSES, derive_product_fields, move_stock, products_col, set_stock
from categories import categories_col, descendant_ids, slugify
from common import (
    _r2, _to_float, _to_int, _truthy, admin_required, body_json, current_user, fail, jlog, ok,
    oid, page_meta, paginate_args, parse_date, regex_i,
)
from db import db
from media import store_images

admin_products_bp = Blueprint("admin_products", __name__)

adjustments_col = db["inventory_adjustments"]

DEFAULT_LOW_STOCK = 10
MAX_WALLET_DISCOUNT = 50
ADJUST_TYPES = {"restock", "return", "deduct", "damaged", "correction"}
ADD_TYPES = {"restock", "return"}
SUBTRACT_TYPES = {"deduct", "damaged"}
BULK_FIELDS = {"status", "featured", "category"}
PRODUCT_FIELDS = (
    "name", "slug", "description", "category", "sub_category", "low_stock_threshold",
    "images", "options", "variants", "specifications", "compatibility", "status",
    "featured", "wallet_only_discount",
)


# ---------- Payload parsing ----------
def _payload() -> Tuple[Dict[str, Any], List]:
    """JSON body, or multipart with a `data` JSON field plus `images` files."""
    if request.files or request.form:
        raw = request.form.get("data") or "{}"
        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        return (data if isinstance(data, dict) else {}), request.files.getlist("images")
    return body_json(), []


def _unique_slug(base: str, exclude_id=None) -> str:
    slug, n = base, 2
    while True:
        q: Dict[str, Any] = {"slug": slug}
        if exclude_id is not None:
            q["_id"] = {"$ne": exclude_id}
        if not products_col.find_one(q, {"_id": 1}):
            return slug
        slug = f"{base}-{n}"
        n += 1


def _clean_variants(raw, product_id=None) -> Tuple[Optional[List[dict]], Optional[str]]:
    if not isinstance(raw, list) or not raw:
        return None, "At least one variant is required"
    out, seen = [], set()
    for i, v in enumerate(raw, start=1):
        if not isinstance(v, dict):
            return None, f"Variant {i} is invalid"
        sku = (v.get("sku") or "").strip().upper()
        selling = _to_float(v.get("selling_price", v.get("sellingPrice")))
        cost = _to_float(v.get("cost_price", v.get("costPrice")))
        stock = _to_int(v.get("stock"))
        compare = _to_float(v.get("compare_at_price", v.get("compareAtPrice")))
        if not sku:
            return None, f"Variant {i}: SKU is required"
        if sku in seen:
            return None, f"Duplicate SKU {sku}"
        if selling is None or selling < 0:
            return None, f"Variant {sku}: selling price must be a non-negative number"
        if cost is None or cost < 0:
            return None, f"Variant {sku}: cost price must be a non-negative number"
        if stock is None or stock < 0:
            return None, f"Variant {sku}: stock must be a non-negative integer"
        seen.add(sku)
        out.append({
            "_id": oid(v.get("_id")) or ObjectId(),
            "sku": sku,
            "attribute_values": v.get("attribute_values") or v.get("attributeValues") or {},
            "cost_price": _r2(cost),
            "selling_price": _r2(selling),
            "compare_at_price": _r2(compare) if compare else None,
            "stock": stock,
            "image": v.get("image"),
        })

    clash_q: Dict[str, Any] = {"variants.sku": {"$in": sorted(seen)}}
    if product_id is not None:
        clash_q["_id"] = {"$ne": product_id}
    clash = products_col.find_one(clash_q, {"name": 1})
    if clash:
        return None, f"SKU already used by {clash.get('name')}"
    return out, None


def _clean_wallet_discount(raw) -> Tuple[Optional[dict], Optional[str]]:
    if not isinstance(raw, dict):
        return {"enabled": False, "percentage": 0, "valid_until": None}, None
    pct = _to_float(raw.get("percentage"), 0) or 0
    if not 0 <= pct <= MAX_WALLET_DISCOUNT:
        return None, f"Wallet discount must be between 0 and {MAX_WALLET_DISCOUNT}%"
    valid_until = raw.get("valid_until") or raw.get("validUntil")
    parsed = parse_date(valid_until) if valid_until else None
    if valid_until and not parsed:
        return None, "Invalid wallet discount expiry date"
    return {"enabled": _truthy(raw.get("enabled")), "percentage": pct, "valid_until": parsed}, None


def _clean_fields(data: Dict[str, Any], partial: bool, product_id=None) -> Tuple[Dict[str, Any], Optional[Tuple[str, int]]]:
    """Validate the product fields present in data. Returns ($set doc, (error, status))."""
    out: Dict[str, Any] = {}

    if not partial:
        for f in ("name", "description", "category"):
            if not data.get(f):
                return {}, (f"{f.capitalize()} is required", 400)

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return {}, ("Name cannot be empty", 400)
        out["name"] = name
    if "description" in data:
        out["description"] = (data.get("description") or "").strip()

    for field in ("category", "sub_category"):
        if field in data:
            if field == "sub_category" and not data.get(field):
                out[field] = None
                continue
            cid = oid(data.get(field))
            if not cid or not categories_col.find_one({"_id": cid}, {"_id": 1}):
                return {}, (f"{field.replace('_', ' ').capitalize()} not found", 404)
            out[field] = cid

    if "slug" in data and data.get("slug"):
        out["slug"] = _unique_slug(slugify(data["slug"]), product_id)
    elif "name" in out and not partial:
        base = slugify(out["name"])
        if not base:
            return {}, ("Could not derive a slug from the name", 400)
        out["slug"] = _unique_slug(base, product_id)

    if "variants" in data or not partial:
        variants, err = _clean_variants(data.get("variants"), product_id)
        if err:
            return {}, (err, 400)
        out["variants"] = variants

    if "status" in data:
        status = (data.get("status") or "").strip().lower()
        if status not in PRODUCT_STATUSES:
            return {}, (f"Status must be one of: {', '.join(sorted(PRODUCT_STATUSES))}", 400)
        out["status"] = status

    if "low_stock_threshold" in data:
        threshold = _to_int(data.get("low_stock_threshold"))
        if threshold is None or threshold < 0:
            return {}, ("Low stock threshold must be a non-negative integer", 400)
        out["low_stock_threshold"] = threshold

    if "wallet_only_discount" in data:
        wod, err = _clean_wallet_discount(data.get("wallet_only_discount"))
        if err:
            return {}, (err, 400)
        out["wallet_only_discount"] = wod

    if "featured" in data:
        out["featured"] = _truthy(data.get("featured"))
    for field in ("images", "options", "specifications"):
        if field in data:
            val = data.get(field)
            out[field] = val if isinstance(val, list) else []
    if "compatibility" in data:
        compat = data.get("compatibility") or {}
        out["compatibility"] = {
            "brands": [b for b in compat.get("brands") or [] if b],
            "models": [m for m in compat.get("models") or [] if m],
        }
    return out, None


def _attach_uploads(fields: Dict[str, Any], existing: List[dict], files: List) -> Optional[str]:
    if not files:
        return None
    uploaded, err = store_images(files, current_user()["_id"])
    if err:
        return err
    images = list(fields.get("images", existing) or [])
    if not any(i.get("is_primary") for i in images) and uploaded:
        uploaded[0]["is_primary"] = True
    fields["images"] = images + [{**u, "is_primary": u.get("is_primary", False)} for u in uploaded]
    return None


def _status_for_stock(status: str, total_stock: int) -> str:
    if status == "active" and total_stock <= 0:
        return "out_of_stock"
    if status == "out_of_stock" and total_stock > 0:
        return "active"
    return status


# ---------- Products ----------
@admin_products_bp.route("/api/v1/admin/products", methods=["GET"])
@admin_required
def admin_list_products():
    page, limit, skip = paginate_args(default_limit=20)
    q: Dict[str, Any] = {}
    status = (request.args.get("status") or "").strip().lower()
    if status in PRODUCT_STATUSES:
        q["status"] = status
    category = oid(request.args.get("category"))
    if category:
        ids = descendant_ids(category)
        q["$or"] = [{"category": {"$in": ids}}, {"sub_category": {"$in": ids}}]
    search = (request.args.get("search") or "").strip()
    if search:
        rx = regex_i(search)
        q.setdefault("$and", []).append({"$or": [{"name": rx}, {"slug": rx}, {"variants.sku": rx}]})

    total = products_col.count_documents(q)
    items = list(products_col.find(q).sort("created_at", -1).skip(skip).limit(limit))
    cat_ids = list({p.get("category") for p in items if p.get("category")})
    cats = {c["_id"]: c for c in categories_col.find({"_id": {"$in": cat_ids}}, {"name": 1, "slug": 1})} if cat_ids else {}
    for p in items:
        p["category_info"] = cats.get(p.get("category"))
    return ok(items, meta=page_meta(total, page, limit))


@admin_products_bp.route("/api/v1/admin/products/bulk-update", methods=["PATCH"])
@admin_required
def bulk_update_products():
    data = body_json()
    ids = [oid(i) for i in data.get("productIds") or []]
    updates = data.get("updates") or {}
    if not ids or any(i is None for i in ids):
        return fail("productIds must be a non-empty array of valid ids")
    if not isinstance(updates, dict) or not updates:
        return fail("updates is required")
    unknown = set(updates) - BULK_FIELDS
    if unknown:
        return fail(f"Only {', '.join(sorted(BULK_FIELDS))} can be bulk updated")

    fields, err = _clean_fields(updates, partial=True)
    if err:
        return fail(*err)
    fields["updated_at"] = datetime.utcnow()
    res = products_col.update_many({"_id": {"$in": ids}}, {"$set": fields})

    log_activity("bulk_update_products", "product", None,
                 f"Bulk updated {res.modified_count} product(s)",
                 {"productIds": [str(i) for i in ids], "updates": updates})
    return ok({"matchedCount": res.matched_count, "modifiedCount": res.modified_count})


@admin_products_bp.route("/api/v1/admin/products/<product_id>", methods=["GET"])
@admin_required
def admin_get_product(product_id):
    pid = oid(product_id)
    product = products_col.find_one({"_id": pid}) if pid else None
    if not product:
        return fail("Product not found", 404)
    return ok(product)


@admin_products_bp.route("/api/v1/admin/products", methods=["POST"])
@admin_required
def admin_create_product():
    data, files = _payload()
    fields, err = _clean_fields(data, partial=False)
    if err:
        return fail(*err)
    err = _attach_uploads(fields, [], files)
    if err:
        return fail(err)

    now = datetime.utcnow()
    doc = {
        "sub_category": None,
        "low_stock_threshold": DEFAULT_LOW_STOCK,
        "images": [],
        "options": [],
        "specifications": [],
        "compatibility": {"brands": [], "models": []},
        "status": "active",
        "featured": False,
        "wallet_only_discount": {"enabled": False, "percentage": 0, "valid_until": None},
        **fields,
        "views": 0,
        "sales_count": 0,
        "created_at": now,
        "updated_at": now,
    }
    doc.update(derive_product_fields(doc))
    doc["status"] = _status_for_stock(doc["status"], doc["total_stock"])
    doc["_id"] = products_col.insert_one(doc).inserted_id

    log_activity("create", "product", doc["_id"], f"Created product {doc['name']}",
                 {"before": {}, "after": snapshot(doc, ("name", "slug", "status", "min_price", "total_stock"))})
    jlog("product_created", product_id=str(doc["_id"]), slug=doc["slug"])
    return ok(doc, 201)


@admin_products_bp.route("/api/v1/admin/products/<product_id>", methods=["PATCH", "PUT"])
@admin_required
def admin_update_product(product_id):
    pid = oid(product_id)
    product = products_col.find_one({"_id": pid}) if pid else None
    if not product:
        return fail("Product not found", 404)

    data, files = _payload()
    fields, err = _clean_fields(data, partial=True, product_id=pid)
    if err:
        return fail(*err)
    err = _attach_uploads(fields, product.get("images") or [], files)
    if err:
        return fail(err)
    if not fields:
        return fail("Nothing to update")

    merged = {**product, **fields}
    fields.update(derive_product_fields(merged))
    fields["status"] = _status_for_stock(merged.get("status") or "active", fields["total_stock"])
    fields["updated_at"] = datetime.utcnow()

    updated = products_col.find_one_and_update(
        {"_id": pid}, {"$set": fields}, return_document=ReturnDocument.AFTER,
    )
    changed = [f for f in PRODUCT_FIELDS if f in fields]
    log_activity("update", "product", pid, f"Updated product {updated.get('name')}",
                 {"before": snapshot(product, changed), "after": snapshot(updated, changed)})
    return ok(updated)


@admin_products_bp.route("/api/v1/admin/products/<product_id>", methods=["DELETE"])
@admin_required
def admin_delete_product(product_id):
    pid = oid(product_id)
    product = products_col.find_one({"_id": pid}) if pid else None
    if not product:
        return fail("Product not found", 404)
    products_col.delete_one({"_id": pid})
    log_activity("delete", "product", pid, f"Deleted product {product.get('name')}",
                 {"before": snapshot(product, ("name", "slug", "status")), "after": {}})
    return ok(message="Product deleted")


@admin_products_bp.route("/api/v1/admin/media/upload", methods=["POST"])
@admin_required
def upload_media():
    files = request.files.getlist("images") or request.files.getlist("files")
    if not files:
        return fail("No files uploaded")
    uploaded, err = store_images(files, current_user()["_id"])
    if err:
        return fail(err)
    return ok(uploaded, 201, urls=[u["url"] for u in uploaded])


# ---------- Inventory ----------
def _variant_flag(stock: int, threshold: int) -> str:
    if stock <= 0:
        return "out"
    if stock <= threshold:
        return "low"
    return "ok"


@admin_products_bp.route("/api/v1/admin/inventory/overview", methods=["GET"])
@admin_required
def inventory_overview():
    units = 0
    cost_value = 0.0
    low_products = out_products = 0
    rows = []
    for p in products_col.find({}, {"name": 1, "slug": 1, "status": 1, "variants": 1,
                                     "low_stock_threshold": 1, "total_stock": 1}).sort("name", 1):
        threshold = int(p.get("low_stock_threshold") or DEFAULT_LOW_STOCK)
        variants = []
        for v in p.get("variants") or []:
            stock = int(v.get("stock") or 0)
            units += stock
            cost_value += stock * float(v.get("cost_price") or 0)
            variants.append({"sku": v.get("sku"), "stock": stock,
                             "attribute_values": v.get("attribute_values") or {},
                             "flag": _variant_flag(stock, threshold)})
        total_stock = sum(v["stock"] for v in variants)
        if total_stock <= 0:
            out_products += 1
            flag = "out"
        elif any(v["flag"] != "ok" for v in variants):
            low_products += 1
            flag = "low"
        else:
            flag = "ok"
        rows.append({"_id": p["_id"], "name": p.get("name"), "slug": p.get("slug"),
                     "status": p.get("status"), "total_stock": total_stock,
                     "low_stock_threshold": threshold, "flag": flag, "variants": variants})

    since = datetime.utcnow() - timedelta(days=30)
    recent = list(adjustments_col.find({}).sort("created_at", -1).limit(20))
    by_reason = Counter(a.get("type") for a in adjustments_col.find({"created_at": {"$gte": since}}, {"type": 1}))

    return ok({
        "totals": {
            "products": len(rows),
            "units": units,
            "costValue": _r2(cost_value),
            "lowStock": low_products,
            "outOfStock": out_products,
        },
        "products": rows,
        "recentAdjustments": recent,
        "adjustmentsByReason": dict(by_reason),
    })


@admin_products_bp.route("/api/v1/admin/inventory/adjust", methods=["POST"])
@admin_required
def adjust_inventory():
    data = body_json()
    pid = oid(data.get("productId"))
    adj_type = (data.get("type") or "").strip().lower()
    qty = _to_int(data.get("quantity"))
    note = (data.get("note") or data.get("reason") or "").strip()

    if adj_type not in ADJUST_TYPES:
        return fail(f"Type must be one of: {', '.join(sorted(ADJUST_TYPES))}")
    if qty is None or qty < 0 or (qty == 0 and adj_type != "correction"):
        return fail("Quantity must be a positive integer")
    product = products_col.find_one({"_id": pid}) if pid else None
    if not product:
        return fail("Product not found", 404)

    variants = product.get("variants") or []
    sku = (data.get("sku") or "").strip().upper() or (variants[0].get("sku") if variants else None)
    before_variant = next((v for v in variants if (v.get("sku") or "").upper() == (sku or "")), None)
    if not before_variant:
        return fail("Variant not found", 404)
    before_stock = int(before_variant.get("stock") or 0)

    if adj_type in ADD_TYPES:
        updated, variant = move_stock(pid, sku, qty)
    elif adj_type in SUBTRACT_TYPES:
        updated, variant = move_stock(pid, sku, -qty)
    else:
        updated, variant = set_stock(pid, sku, qty)
    after_stock = int(variant.get("stock") or 0)

    admin = current_user()
    adjustments_col.insert_one({
        "product_id": pid,
        "product_name": product.get("name"),
        "sku": sku,
        "type": adj_type,
        "quantity": qty,
        "before": before_stock,
        "after": after_stock,
        "note": note or None,
        "admin_id": admin["_id"],
        "created_at": datetime.utcnow(),
    })
    log_activity("inventory_adjust", "product", pid,
                 f"{adj_type.capitalize()} {qty} x {sku} ({product.get('name')})",
                 {"before": {"stock": before_stock, "status": product.get("status")},
                  "after": {"stock": after_stock, "status": updated.get("status")}})
    return ok(updated, adjustment={"sku": sku, "type": adj_type, "before": before_stock, "after": after_stock})
