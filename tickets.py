# tickets.py: customer support tickets
from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import Optional

from bson import ObjectId
from flask import Blueprint

from common import body_json, current_user, fail, login_required, ok, oid
from db import db
from notifications import notify_admins

tickets_bp = Blueprint("tickets", __name__)

tickets_col = db["tickets"]
orders_col = db["orders"]

TICKET_STATUSES = ("open", "in-progress", "resolved", "closed")
TICKET_PRIORITIES = ("low", "medium", "high", "urgent")
TICKET_AUTO_CLOSE_MINUTES = int(os.getenv("TICKET_AUTO_CLOSE_MINUTES", "5"))


def auto_close_resolved(now: Optional[datetime] = None, ticket_id=None) -> int:
    """Close tickets that stayed resolved past the grace period."""
    now = now or datetime.utcnow()
    q = {
        "status": "resolved",
        "updated_at": {"$lt": now - timedelta(minutes=TICKET_AUTO_CLOSE_MINUTES)},
    }
    if ticket_id is not None:
        q["_id"] = ticket_id
    res = tickets_col.update_many(q, {"$set": {"status": "closed", "closed_at": now, "updated_at": now}})
    return res.modified_count


def new_comment(user_id, message: str, is_admin: bool = False, is_internal: bool = False) -> dict:
    return {
        "_id": ObjectId(),
        "user_id": user_id,
        "message": message,
        "is_admin": is_admin,
        "is_internal": is_internal,
        "date": datetime.utcnow(),
    }


def _customer_view(ticket: dict) -> dict:
    ticket["comments"] = [c for c in ticket.get("comments") or [] if not c.get("is_internal")]
    return ticket


def _own_ticket(ticket_id):
    tid = oid(ticket_id)
    if not tid:
        return None
    auto_close_resolved(ticket_id=tid)
    return tickets_col.find_one({"_id": tid, "user_id": current_user()["_id"]})


@tickets_bp.route("/api/v1/tickets", methods=["POST"])
@login_required
def create_ticket():
    user = current_user()
    data = body_json()
    subject = (data.get("subject") or "").strip()
    description = (data.get("description") or "").strip()
    priority = (data.get("priority") or "medium").strip().lower()
    if not subject or not description:
        return fail("Subject and description are required")
    if priority not in TICKET_PRIORITIES:
        return fail(f"Priority must be one of: {', '.join(TICKET_PRIORITIES)}")

    order_id = None
    raw_order = data.get("order") or data.get("orderId")
    if raw_order:
        order_id = oid(raw_order)
        if not order_id or not orders_col.find_one({"_id": order_id, "user_id": user["_id"]}, {"_id": 1}):
            return fail("Order not found", 404)

    now = datetime.utcnow()
    ticket = {
        "user_id": user["_id"],
        "order_id": order_id,
        "subject": subject,
        "description": description,
        "status": "open",
        "priority": priority,
        "comments": [],
        "created_at": now,
        "updated_at": now,
    }
    ticket["_id"] = tickets_col.insert_one(ticket).inserted_id
    notify_admins(
        "new_ticket", "New Support Ticket",
        f"{user.get('first_name', '')} opened a ticket: {subject}",
        f"/dashboard/tickets/{ticket['_id']}",
        {"ticketId": str(ticket["_id"]), "priority": priority},
    )
    return ok(ticket, 201)


@tickets_bp.route("/api/v1/tickets/my-tickets", methods=["GET"])
@login_required
def my_tickets():
    user = current_user()
    auto_close_resolved()
    tickets = list(tickets_col.find({"user_id": user["_id"]}).sort("created_at", -1))
    return ok([_customer_view(t) for t in tickets], count=len(tickets))


@tickets_bp.route("/api/v1/tickets/<ticket_id>", methods=["GET"])
@login_required
def get_ticket(ticket_id):
    ticket = _own_ticket(ticket_id)
    if not ticket:
        return fail("Ticket not found", 404)
    return ok(_customer_view(ticket))


@tickets_bp.route("/api/v1/tickets/<ticket_id>/comments", methods=["POST"])
@login_required
def add_comment(ticket_id):
    user = current_user()
    ticket = _own_ticket(ticket_id)
    if not ticket:
        return fail("Ticket not found", 404)
    message = (body_json().get("message") or "").strip()
    if not message:
        return fail("Message is required")
    if ticket.get("status") == "closed":
        return fail("Ticket is closed; please open a new ticket")

    update = {"updated_at": datetime.utcnow()}
    if ticket.get("status") == "resolved":
        update["status"] = "open"
    tickets_col.update_one(
        {"_id": ticket["_id"]},
        {"$push": {"comments": new_comment(user["_id"], message)}, "$set": update},
    )
    notify_admins(
        "new_ticket", "Customer Replied",
        f"New reply on ticket: {ticket.get('subject')}",
        f"/dashboard/tickets/{ticket['_id']}",
    )
    return ok(_customer_view(tickets_col.find_one({"_id": ticket["_id"]})))
