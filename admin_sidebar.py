# admin_sidebar.py
from flask import Blueprint

from common import admin_required, ok
from db import db

admin_sidebar_bp = Blueprint("admin_sidebar", __name__)

orders_col = db["orders"]
tickets_col = db["tickets"]
reviews_col = db["reviews"]


def sidebar_counts() -> dict:
    return {
        "pendingOrders": orders_col.count_documents({"delivery_status": "pending"}),
        # only orders that are currently PROCESSING
        "processingOrders": orders_col.count_documents({"delivery_status": "processing"}),
        "openTickets": tickets_col.count_documents({"status": {"$in": ["open", "in-progress"]}}),
        "pendingReviews": reviews_col.count_documents({"status": "pending"}),
    }


@admin_sidebar_bp.route("/api/v1/admin/sidebar-counts", methods=["GET"])
@admin_required
def admin_sidebar_counts():
    return ok(sidebar_counts())
