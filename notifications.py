# notifications.py: in-app / email / SMS delivery + the notifications API
from __future__ import annotations

import os
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

import requests
from flask import Blueprint
from markupsafe import escape

from common import (
    ADMIN_ROLES, admin_required, current_user, fail, jlog, login_required,
    ok, oid, page_meta, paginate_args,
)
from db import db

notifications_bp = Blueprint("notifications", __name__)

notifications_col = db["notifications"]
users_col = db["users"]

RESEND_API_URL = "https://api.resend.com/emails"
TERMII_API_URL = "https://api.ng.termii.com/api/sms/send"
HTTP_TIMEOUT = 15

NOTIFICATION_TYPES = {
    "order_update", "payment_success", "payment_failed", "low_stock", "system",
    "wallet_update", "shipped", "delivered", "order_cancelled", "ticket_reply",
    "new_order", "new_ticket",
}


def _resend_key() -> str:
    return os.getenv("RESEND_API_KEY", "")


def _termii_key() -> str:
    return os.getenv("TERMII_API_KEY", "")


# ===== Delivery channels (best effort, never raise) ============================
def send_in_app(user_id, ntype: str, title: str, message: str,
                link: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None):
    uid = oid(user_id)
    if not uid:
        jlog("notify_in_app_skipped", reason="no_recipient", type=ntype)
        return None
    if ntype not in NOTIFICATION_TYPES:
        ntype = "system"
    try:
        res = notifications_col.insert_one({
            "recipient": uid,
            "type": ntype,
            "title": title,
            "message": message,
            "link": link,
            "metadata": metadata or {},
            "is_read": False,
            "created_at": datetime.utcnow(),
        })
        return res.inserted_id
    except Exception:
        jlog("notify_in_app_error", error=traceback.format_exc())
        return None


def send_email(to: str, subject: str, html: str):
    key = _resend_key()
    if not key:
        jlog("notify_email_skipped", reason="RESEND_API_KEY missing", to=to, subject=subject)
        return None
    if not to:
        return None
    try:
        r = requests.post(
            RESEND_API_URL,
            headers={"Authorization": f"Bearer {key}", "Content-Type": "application/json"},
            json={
                "from": os.getenv("FROM_EMAIL", "no-reply@plugng.shop"),
                "to": to,
                "subject": subject,
                "html": html,
            },
            timeout=HTTP_TIMEOUT,
        )
        if r.status_code >= 400:
            jlog("notify_email_rejected", status=r.status_code, body=r.text[:500], to=to)
            return None
        return r.json()
    except requests.RequestException as e:
        jlog("notify_email_error", error=str(e), to=to)
        return None
    except ValueError:
        return None


def send_sms(to: str, message: str):
    key = _termii_key()
    if not key:
        # no gateway configured: the message (often an OTP) goes to the log instead
        jlog("sms_fallback", to=to, message=message)
        return {"status": "mock_success", "message": "SMS logged"}
    try:
        r = requests.post(
            TERMII_API_URL,
            json={
                "to": to,
                "from": os.getenv("TERMII_SENDER_ID", "PlugNG"),
                "sms": message,
                "type": "plain",
                "channel": "generic",
                "api_key": key,
            },
            timeout=HTTP_TIMEOUT,
        )
        return r.json()
    except (requests.RequestException, ValueError) as e:
        jlog("notify_sms_error", error=str(e), to=to)
        return None


def notify_admins(ntype: str, title: str, message: str, link: Optional[str] = None,
                  metadata: Optional[Dict[str, Any]] = None):
    """In-app alert for every active admin plus an email to ADMIN_EMAIL."""
    try:
        admins = users_col.find(
            {"role": {"$in": list(ADMIN_ROLES)}, "status": {"$ne": "suspended"}},
            {"_id": 1},
        )
        for a in admins:
            send_in_app(a["_id"], ntype, title, message, link, metadata)
    except Exception:
        jlog("notify_admins_error", error=traceback.format_exc())

    admin_email = os.getenv("ADMIN_EMAIL", "")
    if admin_email:
        send_email(admin_email, f"[Admin Alert] {title}", f"<p>{escape(message)}</p>")


def notify_order_placed(order: dict, user: dict):
    send_in_app(
        user["_id"], "order_update", "Order Placed Successfully",
        f"Your order #{order['order_number']} has been placed.",
        f"/orders/{order['_id']}",
    )
    send_email(
        user.get("email"),
        f"Order Confirmation #{order['order_number']}",
        f"<h1>Thank you for your order!</h1><p>Order #{order['order_number']} has been received.</p>",
    )
    notify_admins(
        "new_order", "New Order Received",
        f"Order #{order['order_number']} was placed by {user.get('email')}.",
        f"/dashboard/orders/{order['_id']}",
        {"orderId": str(order["_id"]), "total": order.get("total")},
    )


def notify_low_stock(product_name: str, sku: str, current_stock: int, product_id=None):
    notify_admins(
        "low_stock", "Low Stock Alert",
        f"Product {product_name} (Variant: {sku}) is running low on stock. Only {current_stock} remaining.",
        "/dashboard/inventory",
        {"productId": str(product_id) if product_id else None, "sku": sku, "stock": current_stock},
    )


# ===== API ====================================================================
def _mine(notification_id):
    nid = oid(notification_id)
    if not nid:
        return None
    return {"_id": nid, "recipient": current_user()["_id"]}


@notifications_bp.route("/api/v1/notifications", methods=["GET"])
@login_required
def list_notifications():
    user = current_user()
    page, limit, skip = paginate_args(default_limit=20)
    q = {"recipient": user["_id"]}
    total = notifications_col.count_documents(q)
    items = list(notifications_col.find(q).sort("created_at", -1).skip(skip).limit(limit))
    unread = notifications_col.count_documents({**q, "is_read": False})
    return ok(items, meta=page_meta(total, page, limit), unreadCount=unread)


@notifications_bp.route("/api/v1/notifications/unread-count", methods=["GET"])
@login_required
def unread_count():
    user = current_user()
    n = notifications_col.count_documents({"recipient": user["_id"], "is_read": False})
    return ok({"count": n})


@notifications_bp.route("/api/v1/notifications/read-all", methods=["PATCH"])
@login_required
def mark_all_read():
    user = current_user()
    res = notifications_col.update_many(
        {"recipient": user["_id"], "is_read": False},
        {"$set": {"is_read": True, "read_at": datetime.utcnow()}},
    )
    return ok({"modified": res.modified_count})


@notifications_bp.route("/api/v1/notifications/<notification_id>/read", methods=["PATCH"])
@login_required
def mark_read(notification_id):
    q = _mine(notification_id)
    if not q:
        return fail("Notification not found", 404)
    res = notifications_col.update_one(q, {"$set": {"is_read": True, "read_at": datetime.utcnow()}})
    if not res.matched_count:
        return fail("Notification not found", 404)
    return ok(notifications_col.find_one(q))


@notifications_bp.route("/api/v1/notifications/<notification_id>", methods=["DELETE"])
@login_required
def delete_notification(notification_id):
    q = _mine(notification_id)
    if not q:
        return fail("Notification not found", 404)
    res = notifications_col.delete_one(q)
    if not res.deleted_count:
        return fail("Notification not found", 404)
    return ok({"deleted": True})


@notifications_bp.route("/api/v1/admin/notifications", methods=["GET"])
@admin_required
def admin_notifications():
    user = current_user()
    q = {"recipient": user["_id"]}
    items = list(notifications_col.find(q).sort("created_at", -1).limit(50))
    unread = notifications_col.count_documents({**q, "is_read": False})
    return ok(items, unreadCount=unread)


@notifications_bp.route("/api/v1/admin/notifications/<notification_id>/read", methods=["PATCH"])
@admin_required
def admin_mark_read(notification_id):
    q = _mine(notification_id)
    if not q:
        return fail("Notification not found", 404)
    res = notifications_col.update_one(q, {"$set": {"is_read": True, "read_at": datetime.utcnow()}})
    if not res.matched_count:
        return fail("Notification not found", 404)
    return ok({"read": True})
