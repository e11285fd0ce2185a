from __future__ import annotations

import os
import random
import time
import traceback
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from flask import Blueprint, request
from pymongo import ReturnDocument

import paystack
from cart_api import carts_col, clear_user_cart
from catalog import deduct_order_stock, find_variant, primary_image, products_col
from common import (
    _r2, body_json, current_user, fail, is_admin, jlog, login_required, ok,
)
from coupons import coupon_error, find_coupon, increment_usage
from db import db
from notifications import notify_low_stock, notify_order_placed, send_email, send_in_app
from pricing import compute_totals, loyalty_tier, pricing_config
from wallet import debit_wallet

checkout_bp = Blueprint("checkout", __name__)

# MongoDB Collections
orders_col = db["orders"]
users_col = db["users"]

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
PENDING_PAYMENT_TTL_HOURS = int(os.getenv("PENDING_PAYMENT_TTL_HOURS", "24"))

PAYMENT_METHODS = {"card", "bank_transfer", "wallet", "cash_on_delivery"}
GATEWAY_METHODS = {"card", "bank_transfer"}
ADDRESS_FIELDS = ("full_name", "phone", "address", "city", "state", "landmark")
REQUIRED_ADDRESS_FIELDS = ("full_name", "phone", "address", "city", "state")
_CAMEL = {"fullName": "full_name"}


# ===== Helpers ================================================================
def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{random.randint(0, 999)}"


def tracking_event(status: str, location: str, message: str) -> Dict[str, Any]:
    return {"status": status, "location": location, "message": message, "timestamp": datetime.utcnow()}


def _normalize_address(raw) -> Tuple[Optional[dict], Optional[str]]:
    if not isinstance(raw, dict):
        return None, "Shipping address is required"
    raw = {_CAMEL.get(k, k): v for k, v in raw.items()}
    addr = {f: (str(raw.get(f) or "")).strip() for f in ADDRESS_FIELDS}
    missing = [f for f in REQUIRED_ADDRESS_FIELDS if not addr[f]]
    if missing:
        return None, f"Shipping address is missing: {', '.join(missing)}"
    return addr, None


def _build_lines(cart_items: List[dict]) -> Tuple[List[dict], Optional[Tuple[str, int]]]:
    """Re-price every cart line from the catalog and check stock."""
    lines = []
    for item in cart_items:
        product = products_col.find_one({"_id": item.get("product_id")})
        if not product:
            return [], (f"Product not found: {item.get('product_id')}", 404)
        if item.get("variant_id"):
            variant = find_variant(product, variant_id=item["variant_id"])
        else:
            variant = (product.get("variants") or [None])[0]
        if not variant:
            return [], (f"Variant not found for product: {product.get('name')}", 400)

        qty = int(item.get("quantity") or 0)
        if int(variant.get("stock") or 0) < qty:
            attrs = ", ".join(str(v) for v in (variant.get("attribute_values") or {}).values())
            label = f"{product.get('name')} ({attrs})" if attrs else product.get("name")
            return [], (f"Insufficient stock for {label}", 400)

        lines.append({
            "product_id": product["_id"],
            "name": product.get("name"),
            "sku": variant.get("sku"),
            "price": _r2(variant.get("selling_price")),
            "quantity": qty,
            "image": variant.get("image") or primary_image(product),
            "variant_attributes": variant.get("attribute_values") or {},
            "product": product,
        })
    return lines, None


def _update_loyalty(user_id, amount: float):
    user = users_col.find_one_and_update(
        {"_id": user_id},
        {"$inc": {"total_spent": _r2(amount)}},
        return_document=ReturnDocument.AFTER,
    )
    if user:
        tier = loyalty_tier(float(user.get("total_spent") or 0))
        if tier != user.get("loyalty_tier"):
            users_col.update_one({"_id": user_id}, {"$set": {"loyalty_tier": tier}})


def confirm_payment(order: dict, reference: str, location: str, message: str,
                    extra: Optional[Dict[str, Any]] = None) -> dict:
    """
    Mark an order paid and run the paid-order side effects exactly once
    (stock, sales count, coupon usage, loyalty, notifications).
    A second confirmation of the same order is a no-op.
    """
    now = datetime.utcnow()
    update: Dict[str, Any] = {
        "payment_status": "paid",
        "paid_at": now,
        "payment_reference": reference,
        "updated_at": now,
        **(extra or {}),
    }
    push = None
    if order.get("delivery_status") == "pending":
        update["delivery_status"] = "processing"
        push = {"tracking_events": tracking_event("processing", location, message)}

    ops: Dict[str, Any] = {"$set": update}
    if push:
        ops["$push"] = push
    paid = orders_col.find_one_and_update(
        {"_id": order["_id"], "payment_status": {"$nin": ["paid", "refunded"]},
         "delivery_status": {"$ne": "cancelled"}},
        ops,
        return_document=ReturnDocument.AFTER,
    )
    if not paid:
        return orders_col.find_one({"_id": order["_id"]})

    try:
        for product, variant in deduct_order_stock(paid):
            notify_low_stock(product.get("name"), variant.get("sku"), int(variant.get("stock") or 0), product["_id"])
        increment_usage(paid.get("coupon_code"))
        _update_loyalty(paid["user_id"], paid.get("total") or 0)
        send_in_app(
            paid["user_id"], "payment_success", "Payment Confirmed",
            f"Payment for order #{paid['order_number']} was successful.",
            f"/orders/{paid['_id']}", {"orderId": str(paid["_id"]), "reference": reference},
        )
    except Exception:
        jlog("confirm_payment_side_effect_error", order=paid.get("order_number"), error=traceback.format_exc())

    jlog("order_paid", order=paid["order_number"], method=paid.get("payment_method"),
         total=paid.get("total"), reference=reference)
    return paid


def expire_stale_payments(now: Optional[datetime] = None) -> int:
    """Gateway orders never paid within the TTL are marked failed."""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=PENDING_PAYMENT_TTL_HOURS)
    q = {
        "payment_method": {"$in": list(GATEWAY_METHODS)},
        "payment_status": "pending",
        "created_at": {"$lt": cutoff},
    }
    expired = 0
    for o in orders_col.find(q, {"_id": 1, "user_id": 1, "order_number": 1}):
        res = orders_col.update_one(
            {"_id": o["_id"], "payment_status": "pending"},
            {"$set": {"payment_status": "failed", "updated_at": now}},
        )
        if res.modified_count:
            expired += 1
            send_in_app(
                o["user_id"], "payment_failed", "Payment Not Completed",
                f"Payment for order #{o['order_number']} was not completed in time.",
                f"/orders/{o['_id']}",
            )
    return expired


# ===== Routes =================================================================
@checkout_bp.route("/api/v1/orders", methods=["POST"])
@login_required
def create_order():
    user = current_user()
    data = body_json()

    payment_method = (data.get("paymentMethod") or data.get("payment_method") or "").strip()
    if payment_method not in PAYMENT_METHODS:
        return fail(f"Payment method must be one of: {', '.join(sorted(PAYMENT_METHODS))}")
    address, err = _normalize_address(data.get("shippingAddress") or data.get("shipping_address"))
    if err:
        return fail(err)

    cart = carts_col.find_one({"user_id": user["_id"]}) or {}
    if not cart.get("items"):
        return fail("Cart is empty")

    lines, err = _build_lines(cart["items"])
    if err:
        return fail(*err)

    coupon = None
    code = (data.get("couponCode") or "").strip().upper()
    if code:
        subtotal = sum(l["price"] * l["quantity"] for l in lines)
        candidate = find_coupon(code)
        if coupon_error(candidate, user["_id"], subtotal) is None:
            coupon = candidate
        else:
            jlog("checkout_coupon_ignored", code=code, user_id=str(user["_id"]))

    totals = compute_totals(lines, address["state"], payment_method, coupon, pricing_config())

    now = datetime.utcnow()
    order = {
        "order_number": generate_order_number(),
        "user_id": user["_id"],
        "items": [{k: v for k, v in l.items() if k != "product"} for l in lines],
        "subtotal": totals["subtotal"],
        "delivery_fee": totals["delivery_fee"],
        "discount": totals["discount"],
        "total": totals["total"],
        "payment_method": payment_method,
        "payment_status": "pending",
        "payment_reference": None,
        "shipping_address": address,
        "delivery_status": "pending",
        "tracking_number": None,
        "tracking_events": [tracking_event("pending", "Central Plug", "Manifest received. Awaiting clearance.")],
        "customer_note": (data.get("customerNote") or "").strip() or None,
        "admin_note": None,
        "coupon_code": coupon["code"] if coupon else None,
        "coupon_discount": totals["coupon_discount"] if coupon else 0.0,
        "created_at": now,
        "updated_at": now,
    }
    order["_id"] = orders_col.insert_one(order).inserted_id

    payment: Dict[str, Any] = {}
    if payment_method == "wallet":
        balance = debit_wallet(
            user["_id"], order["total"], f"Purchase: {order['order_number']}",
            reference=order["order_number"], meta={"order_id": order["_id"]},
        )
        if balance is None:
            orders_col.delete_one({"_id": order["_id"]})
            return fail("Insufficient wallet balance")
        order = confirm_payment(
            order, f"WALLET-{order['order_number']}", "Secure Wallet",
            "Internal funds verified and debited. Order cleared for processing.",
        )
        payment["walletBalance"] = balance

    elif payment_method in GATEWAY_METHODS:
        if paystack.is_dev_mode():
            order = confirm_payment(
                order, f"DEV-{order['order_number']}", "Local Debugger",
                "Development override: Payment bypass active. Manifest validated.",
            )
            payment["devMode"] = True
        else:
            try:
                init = paystack.initialize_transaction(
                    user["email"], order["total"], order["order_number"],
                    f"{FRONTEND_URL}/checkout/success",
                    metadata={"orderId": str(order["_id"]), "type": "order"},
                )
            except paystack.PaystackError as e:
                orders_col.delete_one({"_id": order["_id"]})
                return fail(f"Payment initialization failed: {e}", 502)
            orders_col.update_one({"_id": order["_id"]}, {"$set": {"payment_reference": order["order_number"]}})
            order["payment_reference"] = order["order_number"]
            payment["paymentUrl"] = init.get("authorization_url")
            payment["accessCode"] = init.get("access_code")

    clear_user_cart(user["_id"])
    try:
        notify_order_placed(order, user)
    except Exception:
        jlog("notify_order_placed_error", order=order["order_number"], error=traceback.format_exc())

    return ok(order, 201, reference=order["order_number"], **payment)


@checkout_bp.route("/api/v1/orders/verify", methods=["GET"])
@login_required
def verify_payment():
    user = current_user()
    reference = (request.args.get("reference") or "").strip()
    if not reference:
        return fail("No reference provided")

    order = orders_col.find_one({"$or": [{"order_number": reference}, {"payment_reference": reference}]})
    if not order or (order.get("user_id") != user["_id"] and not is_admin(user)):
        return fail("Order not found", 404)

    if order.get("payment_status") == "paid":
        return ok(order)
    if order.get("delivery_status") == "cancelled":
        return fail("Order has been cancelled", 409)

    if paystack.is_dev_mode() and reference.startswith("ORD-"):
        order = confirm_payment(
            order, reference, "Payment Hook",
            "Internal verification complete. Order moved to processing.",
        )
        return ok(order)

    try:
        data = paystack.verify_transaction(reference)
    except paystack.PaystackError as e:
        jlog("order_verify_failed", reference=reference, error=str(e))
        return fail("Payment verification failed")

    paid_amount = _r2((data.get("amount") or 0) / 100.0)
    if paid_amount + 0.01 < float(order.get("total") or 0):
        jlog("order_verify_amount_mismatch", reference=reference, paid=paid_amount, total=order.get("total"))
        return fail("Payment verification failed")

    order = confirm_payment(
        order, data.get("reference") or reference, "Gate 7 Distribution",
        "Security cleared. Payment confirmed. Transitioning to processing.",
        extra={"gateway_transaction_id": data.get("id"), "payment_channel": data.get("channel")},
    )
    owner = users_col.find_one({"_id": order["user_id"]}, {"email": 1}) or {}
    send_email(
        owner.get("email"), f"Payment received for #{order['order_number']}",
        f"<p>We have received your payment of ₦{order.get('total', 0):,.2f}.</p>",
    )
    return ok(order)
