# admin_dashboard.py: KPIs, sales chart and analytics for the back-office
from __future__ import annotations

import traceback
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List

from bson import ObjectId
from flask import Blueprint, request

from catalog import products_col
from categories import categories_col
from common import (
    _r2, _to_int, admin_required, jlog, month_start, ok, previous_month_start, user_summary,
)
from db import db

admin_dashboard_bp = Blueprint("admin_dashboard", __name__)

# Collections
orders_col = db["orders"]
users_col = db["users"]

DELIVERY_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PERIODS = {"30days": 30, "90days": 90, "1year": 365}


# ----------------------------
# Helpers
# ----------------------------
def _aggregate(col, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    try:
        return list(col.aggregate(pipeline))
    except Exception:
        jlog("dashboard_aggregate_error", collection=col.name, error=traceback.format_exc())
        return []


def _grouped_sum(match: Dict[str, Any], field: str) -> Dict[str, Dict[str, float]]:
    rows = _aggregate(orders_col, [
        {"$match": match},
        {"$group": {"_id": f"${field}", "revenue": {"$sum": "$total"}, "count": {"$sum": 1}}},
    ])
    return {
        str(r.get("_id") or "unknown"): {"revenue": _r2(r.get("revenue")), "count": int(r.get("count") or 0)}
        for r in rows
    }


def compute_revenue(start: datetime) -> Dict[str, Any]:
    by_payment = _grouped_sum({"created_at": {"$gte": start}}, "payment_status")
    paid = by_payment.get("paid", {}).get("revenue", 0.0)
    last_start = previous_month_start(start)
    last_paid = _grouped_sum(
        {"payment_status": "paid", "created_at": {"$gte": last_start, "$lt": start}}, "payment_status",
    ).get("paid", {}).get("revenue", 0.0)
    if last_paid:
        growth = _r2((paid - last_paid) / last_paid * 100)
    else:
        growth = 100.0 if paid else 0.0

    return {
        "paid": paid,
        "pending": by_payment.get("pending", {}).get("revenue", 0.0),
        "failed": by_payment.get("failed", {}).get("revenue", 0.0),
        "lastMonthPaid": last_paid,
        "growth": growth,
        "byMethod": _grouped_sum({"payment_status": "paid", "created_at": {"$gte": start}}, "payment_method"),
        "byDeliveryStatus": _grouped_sum({"payment_status": "paid", "created_at": {"$gte": start}},
                                         "delivery_status"),
    }


def compute_order_counts() -> Dict[str, int]:
    counts = {s: 0 for s in DELIVERY_STATUSES}
    for r in _aggregate(orders_col, [{"$group": {"_id": "$delivery_status", "count": {"$sum": 1}}}]):
        if r.get("_id") in counts:
            counts[r["_id"]] = int(r.get("count") or 0)
    counts["total"] = sum(counts.values())
    return counts


def compute_product_counts() -> Dict[str, int]:
    return {
        "total": products_col.count_documents({}),
        "active": products_col.count_documents({"status": "active"}),
        "outOfStock": products_col.count_documents({"$or": [{"status": "out_of_stock"}, {"total_stock": {"$lte": 0}}]}),
    }


def compute_customer_counts(start: datetime) -> Dict[str, int]:
    return {
        "total": users_col.count_documents({"role": "customer"}),
        "newThisMonth": users_col.count_documents({"role": "customer", "created_at": {"$gte": start}}),
    }


def compute_kpis(start: datetime, revenue: Dict[str, Any]) -> Dict[str, Any]:
    month_orders = orders_col.count_documents({"created_at": {"$gte": start}})
    paid_orders = orders_col.count_documents({"created_at": {"$gte": start}, "payment_status": "paid"})
    delivered = orders_col.count_documents({"created_at": {"$gte": start}, "delivery_status": "delivered"})
    not_cancelled = orders_col.count_documents({"created_at": {"$gte": start},
                                                "delivery_status": {"$ne": "cancelled"}})
    return {
        "totalOrders": month_orders,
        "paidOrders": paid_orders,
        "conversionRate": _r2(paid_orders / month_orders * 100) if month_orders else 0.0,
        "deliveryCompletionRate": _r2(delivered / not_cancelled * 100) if not_cancelled else 0.0,
        "averageOrderValue": _r2(revenue["paid"] / paid_orders) if paid_orders else 0.0,
    }


def compute_daily_revenue(days: int, now: datetime) -> List[Dict[str, Any]]:
    first_day = (now - timedelta(days=days - 1)).date()
    start = datetime.combine(first_day, datetime.min.time())
    buckets = {(first_day + timedelta(days=i)).isoformat(): {"revenue": 0.0, "orders": 0} for i in range(days)}
    for o in orders_col.find({"created_at": {"$gte": start}}, {"created_at": 1, "total": 1, "payment_status": 1}):
        key = o["created_at"].date().isoformat()
        if key not in buckets:
            continue
        buckets[key]["orders"] += 1
        if o.get("payment_status") == "paid":
            buckets[key]["revenue"] += float(o.get("total") or 0)
    return [{"date": d, "revenue": _r2(v["revenue"]), "orders": v["orders"]} for d, v in buckets.items()]


# ----------------------------
# Routes
# ----------------------------
@admin_dashboard_bp.route("/api/v1/admin/dashboard/stats", methods=["GET"])
@admin_required
def dashboard_stats():
    start = month_start()
    revenue = compute_revenue(start)
    return ok({
        "revenue": revenue,
        "orders": compute_order_counts(),
        "products": compute_product_counts(),
        "customers": compute_customer_counts(start),
        "kpis": compute_kpis(start, revenue),
    })


@admin_dashboard_bp.route("/api/v1/admin/dashboard/revenue-chart", methods=["GET"])
@admin_required
def revenue_chart():
    days = max(1, min(_to_int(request.args.get("days"), 30) or 30, 365))
    return ok(compute_daily_revenue(days, datetime.utcnow()))


@admin_dashboard_bp.route("/api/v1/admin/dashboard/recent-orders", methods=["GET"])
@admin_required
def recent_orders():
    limit = max(1, min(_to_int(request.args.get("limit"), 10) or 10, 50))
    orders = list(orders_col.find({}).sort("created_at", -1).limit(limit))
    ids = list({o["user_id"] for o in orders if o.get("user_id")})
    users = {u["_id"]: u for u in users_col.find({"_id": {"$in": ids}})} if ids else {}
    for o in orders:
        o["customer"] = user_summary(users.get(o.get("user_id")))
    return ok(orders)


@admin_dashboard_bp.route("/api/v1/admin/dashboard/low-stock", methods=["GET"])
@admin_required
def low_stock():
    out = []
    for p in products_col.find({}, {"name": 1, "slug": 1, "variants": 1, "low_stock_threshold": 1,
                                     "total_stock": 1, "status": 1}):
        threshold = int(p.get("low_stock_threshold") or 10)
        low = [
            {"sku": v.get("sku"), "stock": int(v.get("stock") or 0),
             "attribute_values": v.get("attribute_values") or {}}
            for v in p.get("variants") or [] if int(v.get("stock") or 0) <= threshold
        ]
        if low:
            out.append({"_id": p["_id"], "name": p.get("name"), "slug": p.get("slug"),
                        "status": p.get("status"), "threshold": threshold,
                        "total_stock": int(p.get("total_stock") or 0), "low_variants": low})
    out.sort(key=lambda r: r["total_stock"])
    return ok(out, count=len(out))


@admin_dashboard_bp.route("/api/v1/admin/analytics", methods=["GET"])
@admin_required
def analytics():
    period = (request.args.get("period") or "30days").strip()
    days = PERIODS.get(period, PERIODS["30days"])
    since = datetime.utcnow() - timedelta(days=days)
    paid_match = {"payment_status": "paid", "created_at": {"$gte": since}}

    # units + revenue per product
    per_product = _aggregate(orders_col, [
        {"$match": paid_match},
        {"$unwind": "$items"},
        {"$group": {"_id": "$items.product_id", "units": {"$sum": "$items.quantity"},
                    "name": {"$first": "$items.name"}}},
        {"$sort": {"units": -1}},
    ])
    revenue_by_product = defaultdict(float)
    for o in orders_col.find(paid_match, {"items": 1}):
        for it in o.get("items") or []:
            revenue_by_product[it.get("product_id")] += float(it.get("price") or 0) * int(it.get("quantity") or 0)

    pids = [r["_id"] for r in per_product if isinstance(r.get("_id"), ObjectId)]
    products = {p["_id"]: p for p in products_col.find({"_id": {"$in": pids}}, {"name": 1, "category": 1})} if pids else {}
    cats = {c["_id"]: c.get("name") for c in categories_col.find({}, {"name": 1})}

    by_category = defaultdict(lambda: {"revenue": 0.0, "units": 0})
    top_products = []
    for r in per_product:
        product = products.get(r["_id"])
        if not product:
            continue
        cat_name = cats.get(product.get("category"), "Uncategorized")
        by_category[cat_name]["revenue"] += revenue_by_product[r["_id"]]
        by_category[cat_name]["units"] += int(r.get("units") or 0)
        if len(top_products) < 10:
            top_products.append({"_id": r["_id"], "name": product.get("name"),
                                 "units": int(r.get("units") or 0),
                                 "revenue": _r2(revenue_by_product[r["_id"]])})

    orders_per_customer = _aggregate(orders_col, [
        {"$match": paid_match},
        {"$group": {"_id": "$user_id", "orders": {"$sum": 1}}},
    ])
    repeat = sum(1 for r in orders_per_customer if int(r.get("orders") or 0) > 1)

    return ok({
        "period": period if period in PERIODS else "30days",
        "salesByCategory": sorted(
            [{"category": k, "revenue": _r2(v["revenue"]), "units": v["units"]} for k, v in by_category.items()],
            key=lambda r: r["revenue"], reverse=True,
        ),
        "topProducts": top_products,
        "customers": {"repeat": repeat, "oneTime": len(orders_per_customer) - repeat},
    })
