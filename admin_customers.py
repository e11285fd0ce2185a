# admin_customers.py
from datetime import datetime

from flask import Blueprint, request

from activity import log_activity
from checkout import orders_col
from common import (
    _r2, _to_float, admin_required, body_json, current_user, fail, ok, oid, page_meta,
    paginate_args, public_user, regex_i,
)
from db import db
from notifications import send_in_app
from wallet import balances_col, credit_wallet, debit_wallet, get_balance

admin_customers_bp = Blueprint("admin_customers", __name__)
users_col = db["users"]

CUSTOMER_STATUSES = {"active", "suspended"}
WALLET_ACTIONS = {"credit", "debit"}


def _customer(customer_id):
    cid = oid(customer_id)
    return users_col.find_one({"_id": cid, "role": "customer"}) if cid else None


# List Customers
@admin_customers_bp.route("/api/v1/admin/customers", methods=["GET"])
@admin_required
def list_customers():
    page, limit, skip = paginate_args(default_limit=20)
    search = (request.args.get("search") or request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip().lower()

    conditions = [{"role": "customer"}]
    if search:
        regex = regex_i(search)
        conditions.append({"$or": [
            {"first_name": regex},
            {"last_name": regex},
            {"email": regex},
            {"phone": regex},
        ]})

    # treat missing status as "active" for filtering
    if status == "suspended":
        conditions.append({"status": "suspended"})
    elif status == "active":
        conditions.append({"$or": [{"status": "active"}, {"status": {"$exists": False}}]})

    query = {"$and": conditions} if len(conditions) > 1 else conditions[0]
    total = users_col.count_documents(query)
    customers = list(users_col.find(query).sort([("_id", -1)]).skip(skip).limit(limit))

    ids = [c["_id"] for c in customers]
    balances = {b["user_id"]: b.get("amount", 0) for b in balances_col.find({"user_id": {"$in": ids}})} if ids else {}
    items = []
    for c in customers:
        row = public_user(c)
        row["wallet_balance"] = _r2(balances.get(c["_id"], 0))
        items.append(row)
    return ok(items, meta=page_meta(total, page, limit))


@admin_customers_bp.route("/api/v1/admin/customers/<customer_id>", methods=["GET"])
@admin_required
def customer_detail(customer_id):
    user = _customer(customer_id)
    if not user:
        return fail("Customer not found", 404)

    orders = list(orders_col.find({"user_id": user["_id"]}).sort("created_at", -1))
    total_spent = sum(
        float(o.get("total") or 0) for o in orders
        if o.get("delivery_status") == "delivered" and o.get("payment_status") == "paid"
    )
    data = public_user(user)
    data.update({
        "orders": orders,
        "order_count": len(orders),
        "total_spent": _r2(total_spent),
        "wallet_balance": get_balance(user["_id"]),
    })
    return ok(data)


# Credit / debit wallet
@admin_customers_bp.route("/api/v1/admin/customers/<customer_id>/wallet", methods=["PATCH"])
@admin_required
def adjust_wallet(customer_id):
    user = _customer(customer_id)
    if not user:
        return fail("Customer not found", 404)

    data = body_json()
    action = (data.get("type") or data.get("action") or "").strip().lower()
    amount = _to_float(data.get("amount"))
    reason = (data.get("reason") or "").strip()
    if action not in WALLET_ACTIONS:
        return fail("Type must be credit or debit")
    if amount is None or amount <= 0:
        return fail("Amount must be greater than zero")
    if not reason:
        return fail("Reason is required")

    admin = current_user()
    before = get_balance(user["_id"])
    meta = {"actor_admin_id": admin["_id"], "reason": reason}
    reference = f"ADM-{int(datetime.utcnow().timestamp() * 1000)}-{str(user['_id'])[-4:]}"

    if action == "credit":
        after = credit_wallet(user["_id"], amount, f"Admin credit: {reason}", reference,
                              category="admin_adjust", gateway="Admin", meta=meta)
        moved = _r2(amount)
    else:
        # floor the balance at zero
        moved = _r2(min(amount, before))
        after = before
        if moved > 0:
            after = debit_wallet(user["_id"], moved, f"Admin debit: {reason}", reference,
                                 category="admin_adjust", gateway="Admin", meta=meta)
            if after is None:
                return fail("Balance changed during adjustment; retry", 409)

    send_in_app(
        user["_id"], "wallet_update",
        "Wallet Credited" if action == "credit" else "Wallet Debited",
        f"Your wallet was {action}ed with ₦{moved:,.2f}. Reason: {reason}",
        "/account/wallet", {"reference": reference, "amount": moved},
    )
    log_activity("wallet_adjust", "customer", user["_id"],
                 f"Wallet {action} of ₦{moved:,.2f} for {user.get('email')}: {reason}",
                 {"before": {"balance": before}, "after": {"balance": after}})
    return ok({"balance": after, "amount": moved, "type": action, "reference": reference})


@admin_customers_bp.route("/api/v1/admin/customers/<customer_id>/status", methods=["PATCH"])
@admin_required
def update_customer_status(customer_id):
    user = _customer(customer_id)
    if not user:
        return fail("Customer not found", 404)

    status = (body_json().get("status") or "").strip().lower()
    if status not in CUSTOMER_STATUSES:
        return fail("Status must be active or suspended")

    old = user.get("status") or "active"
    now = datetime.utcnow()
    users_col.update_one(
        {"_id": user["_id"]},
        {
            "$set": {"status": status, "status_updated_at": now, "updated_at": now},
            "$push": {"status_history": {"at": now, "by": current_user()["_id"], "to": status}},
        },
    )
    log_activity("status_change", "customer", user["_id"],
                 f"Customer {user.get('email')} set to {status}",
                 {"before": {"status": old}, "after": {"status": status}})
    return ok({"_id": user["_id"], "status": status})
