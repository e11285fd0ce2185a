# admin_coupons.py: coupon CRUD + redemption stats
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from flask import Blueprint, request
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from activity import log_activity, snapshot
from common import (
    _r2, _to_float, _to_int, _truthy, admin_required, body_json, current_user, fail, ok, oid,
    page_meta, paginate_args, parse_date, regex_i,
)
from coupons import coupons_col, orders_col

admin_coupons_bp = Blueprint("admin_coupons", __name__)

COUPON_TYPES = {"percentage", "fixed"}
COUPON_FIELDS = ("code", "type", "value", "min_order_amount", "max_discount_amount", "expiry_date",
                 "usage_limit", "limit_per_user", "is_active", "description")


def _clean(data: Dict[str, Any], partial: bool, current: Optional[dict] = None) -> Tuple[Dict[str, Any], Optional[str]]:
    out: Dict[str, Any] = {}
    if not partial or "code" in data:
        code = (data.get("code") or "").strip().upper()
        if not code:
            return {}, "Coupon code is required"
        out["code"] = code
    if not partial or "type" in data:
        ctype = (data.get("type") or "").strip().lower()
        if ctype not in COUPON_TYPES:
            return {}, "Type must be percentage or fixed"
        out["type"] = ctype
    if not partial or "value" in data:
        value = _to_float(data.get("value"))
        if value is None or value <= 0:
            return {}, "Value must be greater than zero"
        out["value"] = _r2(value)
    ctype = out.get("type") or (current or {}).get("type")
    value = out.get("value", (current or {}).get("value"))
    if ctype == "percentage" and value is not None and value > 100:
        return {}, "Percentage coupons cannot exceed 100%"

    key = "expiry_date" if "expiry_date" in data else "expiryDate"
    if not partial or key in data:
        expiry = parse_date(data.get(key))
        if not expiry:
            return {}, "A valid expiry date is required"
        out["expiry_date"] = expiry

    for field, camel in (("min_order_amount", "minOrderAmount"), ("max_discount_amount", "maxDiscountAmount")):
        if field in data or camel in data:
            v = _to_float(data.get(field, data.get(camel)), 0) or 0
            if v < 0:
                return {}, f"{field.replace('_', ' ').capitalize()} cannot be negative"
            out[field] = _r2(v)
    for field, camel in (("usage_limit", "usageLimit"), ("limit_per_user", "limitPerUser")):
        if field in data or camel in data:
            v = _to_int(data.get(field, data.get(camel)), 0) or 0
            if v < 0:
                return {}, f"{field.replace('_', ' ').capitalize()} cannot be negative"
            out[field] = v
    if "is_active" in data or "isActive" in data:
        out["is_active"] = _truthy(data.get("is_active", data.get("isActive")))
    if "description" in data:
        out["description"] = (data.get("description") or "").strip()
    return out, None


@admin_coupons_bp.route("/api/v1/admin/coupons", methods=["GET"])
@admin_required
def list_coupons():
    page, limit, skip = paginate_args(default_limit=20)
    q: Dict[str, Any] = {}
    search = (request.args.get("search") or "").strip()
    if search:
        q["code"] = regex_i(search)
    if request.args.get("active") is not None:
        q["is_active"] = _truthy(request.args.get("active"))
    total = coupons_col.count_documents(q)
    items = list(coupons_col.find(q).sort("created_at", -1).skip(skip).limit(limit))
    return ok(items, meta=page_meta(total, page, limit))


@admin_coupons_bp.route("/api/v1/admin/coupons/stats", methods=["GET"])
@admin_required
def coupon_stats():
    now = datetime.utcnow()
    soon = now + timedelta(days=7)
    coupons = list(coupons_col.find({}))
    discount = sum(
        float(o.get("coupon_discount") or 0)
        for o in orders_col.find({"payment_status": "paid", "coupon_code": {"$ne": None}}, {"coupon_discount": 1})
    )
    return ok({
        "total": len(coupons),
        "active": sum(1 for c in coupons
                      if c.get("is_active", True) and (not c.get("expiry_date") or c["expiry_date"] >= now)),
        "totalRedemptions": sum(int(c.get("usage_count") or 0) for c in coupons),
        "totalDiscount": _r2(discount),
        "expiringSoon": sum(1 for c in coupons
                            if c.get("is_active", True) and c.get("expiry_date") and now <= c["expiry_date"] <= soon),
    })


@admin_coupons_bp.route("/api/v1/admin/coupons", methods=["POST"])
@admin_required
def create_coupon():
    fields, err = _clean(body_json(), partial=False)
    if err:
        return fail(err)
    if coupons_col.find_one({"code": fields["code"]}):
        return fail("A coupon with this code already exists", 409)

    now = datetime.utcnow()
    doc = {
        "min_order_amount": 0.0,
        "max_discount_amount": 0.0,
        "usage_limit": 0,
        "limit_per_user": 0,
        "is_active": True,
        "description": "",
        **fields,
        "usage_count": 0,
        "created_by": current_user()["_id"],
        "created_at": now,
        "updated_at": now,
    }
    try:
        doc["_id"] = coupons_col.insert_one(doc).inserted_id
    except DuplicateKeyError:
        return fail("A coupon with this code already exists", 409)

    log_activity("create_coupon", "coupon", doc["_id"], f"Created coupon {doc['code']}",
                 {"before": {}, "after": snapshot(doc, COUPON_FIELDS)})
    return ok(doc, 201)


@admin_coupons_bp.route("/api/v1/admin/coupons/<coupon_id>", methods=["PATCH", "PUT"])
@admin_required
def update_coupon(coupon_id):
    cid = oid(coupon_id)
    coupon = coupons_col.find_one({"_id": cid}) if cid else None
    if not coupon:
        return fail("Coupon not found", 404)

    fields, err = _clean(body_json(), partial=True, current=coupon)
    if err:
        return fail(err)
    if not fields:
        return fail("Nothing to update")
    if "code" in fields and coupons_col.find_one({"code": fields["code"], "_id": {"$ne": cid}}):
        return fail("A coupon with this code already exists", 409)

    fields["updated_at"] = datetime.utcnow()
    updated = coupons_col.find_one_and_update({"_id": cid}, {"$set": fields},
                                              return_document=ReturnDocument.AFTER)
    changed = [f for f in COUPON_FIELDS if f in fields]
    log_activity("update_coupon", "coupon", cid, f"Updated coupon {updated['code']}",
                 {"before": snapshot(coupon, changed), "after": snapshot(updated, changed)})
    return ok(updated)


@admin_coupons_bp.route("/api/v1/admin/coupons/<coupon_id>", methods=["DELETE"])
@admin_required
def delete_coupon(coupon_id):
    cid = oid(coupon_id)
    coupon = coupons_col.find_one({"_id": cid}) if cid else None
    if not coupon:
        return fail("Coupon not found", 404)
    coupons_col.delete_one({"_id": cid})
    log_activity("delete_coupon", "coupon", cid, f"Deleted coupon {coupon['code']}",
                 {"before": snapshot(coupon, COUPON_FIELDS), "after": {}})
    return ok(message="Coupon deleted")
