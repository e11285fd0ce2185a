# admin_tickets.py: support desk for admins
from datetime import datetime

from flask import Blueprint, request
from markupsafe import escape

from activity import log_activity, snapshot
from common import (
    _truthy, admin_required, body_json, current_user, fail, ok, oid, page_meta,
    paginate_args, user_summary,
)
from db import db
from notifications import send_email, send_in_app
from tickets import (
    TICKET_PRIORITIES, TICKET_STATUSES, auto_close_resolved, new_comment, orders_col, tickets_col,
)

admin_tickets_bp = Blueprint("admin_tickets", __name__)

users_col = db["users"]


def _load(ticket_id):
    tid = oid(ticket_id)
    if not tid:
        return None
    auto_close_resolved(ticket_id=tid)
    return tickets_col.find_one({"_id": tid})


def _populate(ticket: dict) -> dict:
    ticket["user"] = user_summary(users_col.find_one({"_id": ticket.get("user_id")}))
    if ticket.get("order_id"):
        o = orders_col.find_one({"_id": ticket["order_id"]},
                                {"order_number": 1, "total": 1, "delivery_status": 1, "payment_status": 1})
        ticket["order"] = o
    return ticket


@admin_tickets_bp.route("/api/v1/admin/tickets", methods=["GET"])
@admin_required
def list_tickets():
    auto_close_resolved()
    page, limit, skip = paginate_args(default_limit=20)
    q = {}
    status = (request.args.get("status") or "").strip().lower()
    priority = (request.args.get("priority") or "").strip().lower()
    if status and status != "all":
        if status not in TICKET_STATUSES:
            return fail("Invalid status filter")
        q["status"] = status
    if priority and priority != "all":
        if priority not in TICKET_PRIORITIES:
            return fail("Invalid priority filter")
        q["priority"] = priority

    total = tickets_col.count_documents(q)
    items = list(tickets_col.find(q).sort("updated_at", -1).skip(skip).limit(limit))
    uids = list({t["user_id"] for t in items if t.get("user_id")})
    users = {u["_id"]: u for u in users_col.find({"_id": {"$in": uids}})} if uids else {}
    for t in items:
        t["user"] = user_summary(users.get(t.get("user_id")))
    return ok(items, meta=page_meta(total, page, limit))


@admin_tickets_bp.route("/api/v1/admin/tickets/<ticket_id>", methods=["GET"])
@admin_required
def get_ticket(ticket_id):
    ticket = _load(ticket_id)
    if not ticket:
        return fail("Ticket not found", 404)
    return ok(_populate(ticket))


@admin_tickets_bp.route("/api/v1/admin/tickets/<ticket_id>", methods=["PATCH"])
@admin_required
def update_ticket(ticket_id):
    ticket = _load(ticket_id)
    if not ticket:
        return fail("Ticket not found", 404)
    data = body_json()
    update = {}
    if "status" in data:
        status = (data.get("status") or "").strip().lower()
        if status not in TICKET_STATUSES:
            return fail(f"Status must be one of: {', '.join(TICKET_STATUSES)}")
        update["status"] = status
    if "priority" in data:
        priority = (data.get("priority") or "").strip().lower()
        if priority not in TICKET_PRIORITIES:
            return fail(f"Priority must be one of: {', '.join(TICKET_PRIORITIES)}")
        update["priority"] = priority
    if not update:
        return fail("Nothing to update")

    now = datetime.utcnow()
    update["updated_at"] = now
    if update.get("status") == "resolved":
        update["resolved_at"] = now
    tickets_col.update_one({"_id": ticket["_id"]}, {"$set": update})
    fresh = tickets_col.find_one({"_id": ticket["_id"]})

    fields = [f for f in ("status", "priority") if f in update]
    log_activity("update_ticket", "ticket", ticket["_id"], f"Updated ticket: {ticket.get('subject')}",
                 {"before": snapshot(ticket, fields), "after": snapshot(fresh, fields)})

    if update.get("status") and update["status"] != ticket.get("status"):
        send_in_app(
            ticket["user_id"], "ticket_reply", "Ticket Updated",
            f"Your ticket \"{ticket.get('subject')}\" is now {update['status']}.",
            f"/support/tickets/{ticket['_id']}",
        )
    return ok(_populate(fresh))


@admin_tickets_bp.route("/api/v1/admin/tickets/<ticket_id>/reply", methods=["POST"])
@admin_required
def reply_ticket(ticket_id):
    ticket = _load(ticket_id)
    if not ticket:
        return fail("Ticket not found", 404)
    data = body_json()
    message = (data.get("message") or "").strip()
    if not message:
        return fail("Message is required")
    internal = _truthy(data.get("isInternal"))

    update = {"updated_at": datetime.utcnow()}
    if ticket.get("status") == "open":
        update["status"] = "in-progress"
    tickets_col.update_one(
        {"_id": ticket["_id"]},
        {"$push": {"comments": new_comment(current_user()["_id"], message, True, internal)}, "$set": update},
    )

    if not internal:
        send_in_app(
            ticket["user_id"], "ticket_reply", "Support Replied",
            f"New reply on your ticket: {ticket.get('subject')}",
            f"/support/tickets/{ticket['_id']}",
        )
        customer = users_col.find_one({"_id": ticket["user_id"]}, {"email": 1})
        if customer:
            send_email(
                customer.get("email"), f"Re: {ticket.get('subject')}",
                f"<p>{escape(message)}</p><p>PlugNG Support</p>",
            )
    return ok(_populate(tickets_col.find_one({"_id": ticket["_id"]})))
