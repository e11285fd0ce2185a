# coupons.py: coupon eligibility rules + the customer validation endpoint
from datetime import datetime
from typing import Optional, Tuple

from flask import Blueprint, request

from common import _to_float, current_user, fail, login_required, ok
from db import db
from pricing import coupon_amount

coupons_bp = Blueprint("coupons", __name__)

coupons_col = db["coupons"]
orders_col = db["orders"]

PUBLIC_FIELDS = ("code", "type", "value", "min_order_amount", "max_discount_amount",
                 "expiry_date", "description")


def find_coupon(code: str) -> Optional[dict]:
    code = (code or "").strip().upper()
    if not code:
        return None
    return coupons_col.find_one({"code": code})


def coupon_error(coupon: Optional[dict], user_id, amount: float,
                 now: Optional[datetime] = None) -> Optional[Tuple[str, int]]:
    """(message, http status) when the coupon cannot be used, else None."""
    now = now or datetime.utcnow()
    if not coupon or not coupon.get("is_active", True):
        return "Invalid or inactive coupon code", 404
    if coupon.get("expiry_date") and coupon["expiry_date"] < now:
        return "Coupon has expired", 400
    limit = int(coupon.get("usage_limit") or 0)
    if limit > 0 and int(coupon.get("usage_count") or 0) >= limit:
        return "Coupon usage limit reached", 400
    per_user = int(coupon.get("limit_per_user") or 0)
    if per_user > 0 and user_id is not None:
        used = orders_col.count_documents({
            "user_id": user_id,
            "coupon_code": coupon["code"],
            "payment_status": {"$ne": "failed"},
        })
        if used >= per_user:
            return "You have already used this coupon", 400
    min_amount = float(coupon.get("min_order_amount") or 0)
    if amount < min_amount:
        return f"Minimum order amount for this coupon is ₦{min_amount:,.0f}", 400
    return None


def increment_usage(code: Optional[str]):
    if code:
        coupons_col.update_one({"code": code}, {"$inc": {"usage_count": 1}})


@coupons_bp.route("/api/v1/coupons/validate/<code>", methods=["GET"])
@login_required
def validate_coupon(code):
    amount = _to_float(request.args.get("amount"), 0.0) or 0.0
    coupon = find_coupon(code)
    err = coupon_error(coupon, current_user()["_id"], amount)
    if err:
        return fail(*err)
    data = {f: coupon.get(f) for f in PUBLIC_FIELDS}
    if amount > 0:
        data["discount"] = coupon_amount(coupon, amount)
    return ok(data)
