# orders.py: the customer's own orders
from datetime import datetime

from flask import Blueprint, request

from checkout import orders_col, tracking_event
from common import current_user, fail, login_required, ok, oid, page_meta, paginate_args
from notifications import notify_admins

orders_bp = Blueprint("orders", __name__)

DELIVERY_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")


def _own_order(order_id):
    user = current_user()
    oid_ = oid(order_id)
    if not oid_:
        return None
    return orders_col.find_one({"_id": oid_, "user_id": user["_id"]})


@orders_bp.route("/api/v1/orders/my-orders", methods=["GET"])
@login_required
def my_orders():
    user = current_user()
    page, limit, skip = paginate_args(default_limit=10)

    query = {"user_id": user["_id"]}
    status = (request.args.get("status") or "all").strip().lower()
    if status != "all":
        if status not in DELIVERY_STATUSES:
            return fail(f"Status must be one of: {', '.join(DELIVERY_STATUSES)}")
        query["delivery_status"] = status

    total_count = orders_col.count_documents(query)
    orders = list(
        orders_col.find(query)
        .sort("created_at", -1)
        .skip(skip)
        .limit(limit)
    )
    return ok(orders, meta=page_meta(total_count, page, limit))


@orders_bp.route("/api/v1/orders/<order_id>", methods=["GET"])
@login_required
def get_order(order_id):
    order = _own_order(order_id)
    if not order:
        return fail("Order not found", 404)
    return ok(order)


@orders_bp.route("/api/v1/orders/<order_id>/cancel", methods=["POST"])
@login_required
def cancel_order(order_id):
    order = _own_order(order_id)
    if not order:
        return fail("Order not found", 404)
    if order.get("delivery_status") != "pending" or order.get("payment_status") == "paid":
        return fail("Only unpaid orders that have not been processed can be cancelled")

    now = datetime.utcnow()
    res = orders_col.update_one(
        {"_id": order["_id"], "delivery_status": "pending", "payment_status": {"$ne": "paid"}},
        {
            "$set": {"delivery_status": "cancelled", "payment_status": "failed", "updated_at": now},
            "$push": {"tracking_events": tracking_event("cancelled", "Customer Request", "Order cancelled by customer.")},
        },
    )
    if not res.modified_count:
        return fail("Order could not be cancelled", 409)

    notify_admins(
        "order_update", "Order Cancelled",
        f"Order #{order['order_number']} was cancelled by the customer.",
        f"/dashboard/orders/{order['_id']}",
    )
    return ok(orders_col.find_one({"_id": order["_id"]}))
