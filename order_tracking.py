# order_tracking.py: public order tracking (masked) and owner verification
from datetime import timedelta

from flask import Blueprint

from checkout import orders_col, users_col
from common import body_json, fail, normalize_phone, ok
from masking import mask_address, mask_full_name, mask_phone

order_tracking_bp = Blueprint("order_tracking", __name__)

ESTIMATED_TRANSIT_DAYS = 5


def _estimated_delivery(order):
    shipped_at = order.get("shipped_at")
    return shipped_at + timedelta(days=ESTIMATED_TRANSIT_DAYS) if shipped_at else None


def _public_view(order: dict) -> dict:
    addr = order.get("shipping_address") or {}
    return {
        "order_number": order.get("order_number"),
        "delivery_status": order.get("delivery_status"),
        "payment_status": order.get("payment_status"),
        "tracking_number": order.get("tracking_number"),
        "tracking_events": order.get("tracking_events") or [],
        "created_at": order.get("created_at"),
        "shipped_at": order.get("shipped_at"),
        "delivered_at": order.get("delivered_at"),
        "estimated_delivery": _estimated_delivery(order),
        "shipping_address": {
            "full_name": mask_full_name(addr.get("full_name", "")),
            "phone": mask_phone(addr.get("phone", "")),
            "address": mask_address(addr.get("address", ""), addr.get("city", ""), addr.get("state", "")),
            "city": addr.get("city"),
            "state": addr.get("state"),
        },
        "item_count": len(order.get("items") or []),
        "verified": False,
    }


@order_tracking_bp.route("/api/v1/track/<order_number>", methods=["GET"])
def track_order(order_number):
    order = orders_col.find_one({"order_number": order_number.strip()})
    if not order:
        return fail("Order not found", 404)
    return ok(_public_view(order))


@order_tracking_bp.route("/api/v1/track/<order_number>/verify", methods=["POST"])
def verify_and_track(order_number):
    data = body_json()
    email = (data.get("email") or "").strip().lower()
    phone = normalize_phone(data.get("phone") or "")
    if not email and not phone:
        return fail("Email or phone number is required")

    order = orders_col.find_one({"order_number": order_number.strip()})
    if not order:
        return fail("Order not found", 404)

    owner = users_col.find_one({"_id": order.get("user_id")}) or {}
    owner_phones = {normalize_phone(owner.get("phone") or ""),
                    normalize_phone((order.get("shipping_address") or {}).get("phone") or "")}
    matched = (email and email == (owner.get("email") or "").lower()) or (phone and phone in owner_phones)
    if not matched:
        return fail("Verification failed. Details do not match this order.", 401)

    full = dict(order)
    full.pop("admin_note", None)
    full["estimated_delivery"] = _estimated_delivery(order)
    full["verified"] = True
    return ok(full)
