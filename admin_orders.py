# admin_orders.py: filters, exports, status transitions, tracking, refunds, bulk updates
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from flask import Blueprint, request

from activity import log_activity
from catalog import restock_order
from checkout import confirm_payment, orders_col, tracking_event, users_col
from common import (
    _truthy, admin_required, body_json, current_user, date_range_query, fail, jlog, ok, oid,
    page_meta, paginate_args, regex_i, user_summary,
)
from exports import EXPORT_FORMATS, export_pdf, export_xlsx, fmt_dt
from notifications import send_email, send_in_app
from wallet import credit_wallet, reference_credited

admin_orders_bp = Blueprint("admin_orders", __name__)

DELIVERY_STATUSES = {"pending", "processing", "shipped", "delivered", "cancelled"}
PAYMENT_STATUSES = {"pending", "paid", "failed", "refunded"}
PAYMENT_METHODS = {"card", "bank_transfer", "wallet", "cash_on_delivery"}
FINAL_STATUSES = {"delivered", "cancelled"}
ALLOWED_TRANSITIONS = {
    "pending": {"processing", "shipped", "cancelled"},
    "processing": {"shipped", "delivered", "cancelled"},
    "shipped": {"delivered", "cancelled"},
    "delivered": set(),
    "cancelled": set(),
}
STATUS_EVENTS = {
    "processing": ("Central Hub", "Order moved to PROCESSING."),
    "shipped": ("Logistics Center", "Package is in transit and on its way to you."),
    "delivered": ("Final Destination", "Delivery confirmed. Thank you for shopping with PlugNG!"),
    "cancelled": ("Admin Terminal", "Order has been cancelled."),
}
CUSTOMER_NOTICES = {
    "processing": ("order_update", "Order Processing", "Your order #{n} is being prepared."),
    "shipped": ("shipped", "Order Shipped", "Your order #{n} is on its way."),
    "delivered": ("delivered", "Order Delivered", "Your order #{n} has been delivered."),
    "cancelled": ("order_cancelled", "Order Cancelled", "Your order #{n} has been cancelled."),
}
SNAPSHOT_FIELDS = ("delivery_status", "payment_status", "tracking_number", "admin_note")


def _can_transition(old_status: str, new_status: str) -> bool:
    if old_status == new_status:
        return True
    return new_status in ALLOWED_TRANSITIONS.get(old_status, set())


def _log_status_blocked(order, attempted_status: str, reason: str, source: str, actor_admin_id=None):
    jlog(
        "order_status_blocked",
        order_number=order.get("order_number"),
        mongo_id=str(order.get("_id")),
        attempted_status=attempted_status,
        current_status=(order.get("delivery_status") or ""),
        reason=reason,
        source=source,
        actor_admin_id=actor_admin_id,
    )


def _snap(order: dict) -> Dict[str, Any]:
    return {f: order.get(f) for f in SNAPSHOT_FIELDS}


def _notify_customer(order: dict, status: str):
    notice = CUSTOMER_NOTICES.get(status)
    if not notice:
        return
    ntype, title, msg = notice
    send_in_app(order["user_id"], ntype, title, msg.format(n=order["order_number"]),
                f"/orders/{order['_id']}", {"orderId": str(order["_id"]), "status": status})
    if status in ("shipped", "delivered"):
        customer = users_col.find_one({"_id": order["user_id"]}, {"email": 1})
        if customer:
            send_email(customer.get("email"), f"{title}: #{order['order_number']}",
                       f"<p>{msg.format(n=order['order_number'])}</p>")


# ---------- CORE: apply one status change (used by single + bulk) ----------
def _refund_to_wallet(order: dict, actor_admin_id) -> bool:
    """Credit the charged total back once; returns True when money moved."""
    amount = float(order.get("total") or 0)
    reference = f"REFUND-{order['order_number']}"
    if amount <= 0 or order.get("refunded_at") or reference_credited(reference):
        return False
    credit_wallet(
        order["user_id"], amount, f"Refund: {order['order_number']}", reference,
        category="refund", gateway="Wallet",
        meta={"order_id": order["_id"], "actor_admin_id": actor_admin_id},
    )
    return True


def apply_status_change(order: dict, new_status: str, source: str = "manual",
                        actor_admin_id=None, refund: bool = False) -> Tuple[Optional[dict], Optional[str]]:
    """
    Move an order to new_status honoring ALLOWED_TRANSITIONS.
    Returns (fresh order, None) or (None, error message).
    """
    old_status = order.get("delivery_status") or "pending"
    if new_status == old_status:
        return order, None
    if not _can_transition(old_status, new_status):
        reason = "final_status" if old_status in FINAL_STATUSES else "invalid_transition"
        _log_status_blocked(order, new_status, reason, source, actor_admin_id)
        return None, f"Invalid transition {old_status} -> {new_status}"

    now = datetime.utcnow()
    update: Dict[str, Any] = {"delivery_status": new_status, "updated_at": now}
    if new_status == "shipped" and not order.get("shipped_at"):
        update["shipped_at"] = now
    if new_status == "delivered":
        update["delivered_at"] = now
    if new_status == "cancelled":
        update["cancelled_at"] = now
        if order.get("payment_status") == "pending":
            update["payment_status"] = "failed"

    location, message = STATUS_EVENTS[new_status]
    res = orders_col.update_one(
        {"_id": order["_id"], "delivery_status": old_status},
        {"$set": update, "$push": {"tracking_events": tracking_event(new_status, location, message)}},
    )
    if not res.modified_count:
        _log_status_blocked(order, new_status, "db_guard", source, actor_admin_id)
        return None, "Order changed concurrently; reload and retry"

    if new_status == "cancelled" and order.get("payment_status") == "paid":
        restock_order(order)
        if refund and _refund_to_wallet(order, actor_admin_id):
            orders_col.update_one(
                {"_id": order["_id"]},
                {"$set": {"payment_status": "refunded", "refunded_at": now}},
            )
            log_activity("refund", "order", order["_id"],
                         f"Refunded ₦{float(order.get('total') or 0):,.2f} to wallet for {order['order_number']}",
                         {"before": {"payment_status": "paid"}, "after": {"payment_status": "refunded"}},
                         admin_id=actor_admin_id)

    fresh = orders_col.find_one({"_id": order["_id"]})
    if (new_status == "delivered" and fresh.get("payment_method") == "cash_on_delivery"
            and fresh.get("payment_status") == "pending"):
        fresh = confirm_payment(fresh, f"COD-{fresh['order_number']}", "Final Destination",
                                "Cash collected on delivery.")
    _notify_customer(fresh, new_status)
    return fresh, None


def _apply_tracking(order: dict, tracking_number: str, carrier: Optional[str] = None,
                    message: Optional[str] = None) -> dict:
    """New tracking number: auto-ship pending/processing orders, otherwise just record it."""
    now = datetime.utcnow()
    status = order.get("delivery_status")
    update: Dict[str, Any] = {"tracking_number": tracking_number, "updated_at": now}
    if carrier:
        update["carrier"] = carrier
    if status in ("pending", "processing"):
        update["delivery_status"] = "shipped"
        update["shipped_at"] = now
        event = tracking_event("shipped", "Fulfillment Center",
                               message or f"Package processed and shipped. Tracking #: {tracking_number}")
    else:
        event = tracking_event(status, "Fulfillment Center", message or f"Tracking info updated: {tracking_number}")
    orders_col.update_one({"_id": order["_id"]}, {"$set": update, "$push": {"tracking_events": event}})
    fresh = orders_col.find_one({"_id": order["_id"]})
    if update.get("delivery_status") == "shipped":
        _notify_customer(fresh, "shipped")
    return fresh


# --------- Queries ----------
def _build_query_from_params(args) -> Dict[str, Any]:
    """Central builder so list + export share identical filters."""
    query: Dict[str, Any] = {}
    status = (args.get("status") or "").strip().lower()
    payment_status = (args.get("paymentStatus") or "").strip().lower()
    payment_method = (args.get("paymentMethod") or "").strip().lower()
    search = (args.get("search") or "").strip()

    if status in DELIVERY_STATUSES:
        query["delivery_status"] = status
    if payment_status in PAYMENT_STATUSES:
        query["payment_status"] = payment_status
    if payment_method in PAYMENT_METHODS:
        query["payment_method"] = payment_method

    dr = date_range_query(args.get("startDate") or args.get("date_from"),
                          args.get("endDate") or args.get("date_to"))
    if dr:
        query["created_at"] = dr

    if search:
        rx = regex_i(search)
        user_ids = [u["_id"] for u in users_col.find(
            {"$or": [{"email": rx}, {"first_name": rx}, {"last_name": rx}]}, {"_id": 1},
        )]
        ors = [
            {"order_number": rx},
            {"shipping_address.full_name": rx},
            {"shipping_address.phone": rx},
        ]
        if user_ids:
            ors.append({"user_id": {"$in": user_ids}})
        query["$or"] = ors
    return query


def _with_customers(orders: List[dict]) -> List[dict]:
    ids = list({o["user_id"] for o in orders if o.get("user_id")})
    users = {u["_id"]: u for u in users_col.find({"_id": {"$in": ids}})} if ids else {}
    for o in orders:
        o["customer"] = user_summary(users.get(o.get("user_id")))
    return orders


def _load(order_id) -> Optional[dict]:
    oid_ = oid(order_id)
    return orders_col.find_one({"_id": oid_}) if oid_ else None


# ---------- Routes ----------
@admin_orders_bp.route("/api/v1/admin/orders", methods=["GET"])
@admin_required
def admin_list_orders():
    page, limit, skip = paginate_args(default_limit=20)
    query = _build_query_from_params(request.args)
    total = orders_col.count_documents(query)
    orders = list(orders_col.find(query).sort("created_at", -1).skip(skip).limit(limit))
    return ok(_with_customers(orders), meta=page_meta(total, page, limit))


@admin_orders_bp.route("/api/v1/admin/orders/export", methods=["GET"])
@admin_required
def export_orders():
    fmt = (request.args.get("format") or "xlsx").lower()
    if fmt not in EXPORT_FORMATS:
        return fail("format must be xlsx or pdf")
    query = _build_query_from_params(request.args)
    orders = _with_customers(list(orders_col.find(query).sort("created_at", -1).limit(5000)))

    def _name(o):
        return (o.get("shipping_address") or {}).get("full_name") or ""

    if fmt == "xlsx":
        rows = [{
            "Order #": o.get("order_number"),
            "Date": fmt_dt(o.get("created_at")),
            "Customer": _name(o),
            "Email": (o.get("customer") or {}).get("email") or "",
            "Phone": (o.get("shipping_address") or {}).get("phone") or "",
            "State": (o.get("shipping_address") or {}).get("state") or "",
            "Items": sum(int(i.get("quantity") or 0) for i in o.get("items") or []),
            "Subtotal": o.get("subtotal"),
            "Delivery Fee": o.get("delivery_fee"),
            "Discount": o.get("discount"),
            "Total": o.get("total"),
            "Payment Method": o.get("payment_method"),
            "Payment Status": o.get("payment_status"),
            "Delivery Status": o.get("delivery_status"),
            "Tracking #": o.get("tracking_number") or "",
        } for o in orders]
        return export_xlsx(rows, "orders.xlsx", "Orders")

    rows = [[
        o.get("order_number"), fmt_dt(o.get("created_at")), _name(o),
        f"{float(o.get('total') or 0):,.2f}", o.get("payment_method"),
        (o.get("payment_status") or "").capitalize(), (o.get("delivery_status") or "").capitalize(),
    ] for o in orders]
    return export_pdf("Orders Report",
                      ["Order #", "Date", "Customer", "Total (NGN)", "Method", "Payment", "Delivery"],
                      rows, "orders.pdf")


@admin_orders_bp.route("/api/v1/admin/orders/bulk-status", methods=["PATCH", "POST"])
@admin_required
def bulk_update_status():
    data = body_json()
    raw_ids = data.get("orderIds")
    new_status = (data.get("status") or "").strip().lower()
    if not isinstance(raw_ids, list) or not raw_ids:
        return fail("orderIds must be a non-empty array")
    if new_status not in DELIVERY_STATUSES:
        return fail(f"Status must be one of: {', '.join(sorted(DELIVERY_STATUSES))}")

    admin_id = current_user()["_id"]
    updated, errors = 0, []
    for raw in raw_ids:
        order = _load(raw)
        if not order:
            errors.append(f"{raw}: not found")
            continue
        if order.get("delivery_status") == new_status:
            continue
        fresh, err = apply_status_change(order, new_status, "bulk", admin_id)
        if err:
            errors.append(f"{order.get('order_number')}: {err}")
        else:
            updated += 1

    log_activity("bulk_status_change", "order", None,
                 f"Bulk updated {updated} order(s) to {new_status}",
                 {"orderIds": [str(i) for i in raw_ids], "status": new_status,
                  "modified": updated, "errors": len(errors)})
    return ok({"modifiedCount": updated, "errors": errors})


@admin_orders_bp.route("/api/v1/admin/orders/<order_id>", methods=["GET"])
@admin_required
def admin_get_order(order_id):
    order = _load(order_id)
    if not order:
        return fail("Order not found", 404)
    return ok(_with_customers([order])[0])


@admin_orders_bp.route("/api/v1/admin/orders/status", methods=["PATCH"])
@admin_orders_bp.route("/api/v1/admin/orders/<order_id>/status", methods=["PATCH"])
@admin_required
def update_order_status(order_id=None):
    data = body_json()
    order = _load(order_id or data.get("id") or data.get("orderId"))
    if not order:
        return fail("Order not found", 404)

    status = (data.get("status") or "").strip().lower()
    tracking_number = (data.get("trackingNumber") or "").strip()
    admin_note = data.get("adminNote")
    refund = _truthy(data.get("refund"))
    if status and status not in DELIVERY_STATUSES:
        return fail(f"Status must be one of: {', '.join(sorted(DELIVERY_STATUSES))}")

    admin_id = current_user()["_id"]
    before = _snap(order)
    current = order

    new_tracking = bool(tracking_number) and tracking_number != order.get("tracking_number")
    projected = order.get("delivery_status") or "pending"
    if new_tracking and projected in ("pending", "processing"):
        projected = "shipped"
    if status and not _can_transition(projected, status):
        reason = "final_status" if projected in FINAL_STATUSES else "invalid_transition"
        _log_status_blocked(order, status, reason, "manual", admin_id)
        return fail(f"Invalid transition {projected} -> {status}", 409)

    # 1. Tracking number (may auto-ship)
    if new_tracking:
        current = _apply_tracking(current, tracking_number)

    # 2. Manual status change
    if status and status != current.get("delivery_status"):
        fresh, err = apply_status_change(current, status, "manual", admin_id, refund=refund)
        if err:
            if _snap(current) != before:
                log_activity("status_change", "order", order["_id"],
                             f"Updated order {order['order_number']}",
                             {"before": before, "after": _snap(current)})
            return fail(err, 409)
        current = fresh

    if admin_note:
        orders_col.update_one({"_id": order["_id"]}, {"$set": {"admin_note": admin_note, "updated_at": datetime.utcnow()}})
        current = orders_col.find_one({"_id": order["_id"]})

    after = _snap(current)
    if after != before:
        log_activity("status_change", "order", order["_id"],
                     f"Updated order {order['order_number']}",
                     {"before": before, "after": after})
    return ok(current)


@admin_orders_bp.route("/api/v1/admin/orders/<order_id>/tracking", methods=["PATCH"])
@admin_required
def update_tracking(order_id):
    order = _load(order_id)
    if not order:
        return fail("Order not found", 404)
    data = body_json()
    tracking_number = (data.get("trackingNumber") or "").strip()
    if not tracking_number:
        return fail("Tracking number is required")
    if order.get("delivery_status") in FINAL_STATUSES:
        return fail(f"Order is already {order.get('delivery_status')}", 409)

    fresh = _apply_tracking(order, tracking_number, (data.get("carrier") or "").strip() or None,
                            (data.get("message") or "").strip() or None)
    log_activity("update_tracking", "order", order["_id"],
                 f"Tracking updated for {order['order_number']}",
                 {"before": _snap(order), "after": _snap(fresh)})
    return ok(fresh)
