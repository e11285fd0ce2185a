# admin_wallet.py: wallet economics for the back-office
from collections import defaultdict

from flask import Blueprint, request

from checkout import PAYMENT_METHODS, orders_col
from common import (
    _r2, admin_required, ok, page_meta, paginate_args, month_start, user_summary,
)
from db import db
from wallet import balances_col, transactions_col

admin_wallet_bp = Blueprint("admin_wallet", __name__)
users_col = db["users"]


def _sum_count(rows):
    amounts = [float(r.get("amount") or 0) for r in rows]
    total = sum(amounts)
    return {
        "total": _r2(total),
        "count": len(amounts),
        "average": _r2(total / len(amounts)) if amounts else 0.0,
    }


@admin_wallet_bp.route("/api/v1/admin/wallet/stats", methods=["GET"])
@admin_required
def wallet_stats():
    start = month_start()
    liability = sum(float(b.get("amount") or 0) for b in balances_col.find({}, {"amount": 1}))
    holders = balances_col.count_documents({"amount": {"$gt": 0}})

    topups = _sum_count(transactions_col.find(
        {"type": "credit", "category": "topup", "status": "success", "created_at": {"$gte": start}},
        {"amount": 1},
    ))
    spending = _sum_count(transactions_col.find(
        {"type": "debit", "category": "purchase", "status": "success", "created_at": {"$gte": start}},
        {"amount": 1},
    ))
    utilization = _r2(spending["total"] / topups["total"] * 100) if topups["total"] else 0.0

    return ok({
        "totalLiability": _r2(liability),
        "activeHolders": holders,
        "monthlyTopups": topups,
        "monthlySpending": spending,
        "utilizationRate": utilization,
        "netGrowth": _r2(topups["total"] - spending["total"]),
    })


@admin_wallet_bp.route("/api/v1/admin/wallet/payment-comparison", methods=["GET"])
@admin_required
def payment_comparison():
    start = month_start()
    by_method = defaultdict(lambda: {"orders": 0, "revenue": 0.0})
    for o in orders_col.find({"payment_status": "paid", "created_at": {"$gte": start}},
                             {"payment_method": 1, "total": 1}):
        row = by_method[o.get("payment_method") or "unknown"]
        row["orders"] += 1
        row["revenue"] += float(o.get("total") or 0)

    grand = sum(r["revenue"] for r in by_method.values())
    out = []
    for method in sorted(set(PAYMENT_METHODS) | set(by_method)):
        row = by_method.get(method, {"orders": 0, "revenue": 0.0})
        out.append({
            "method": method,
            "orders": row["orders"],
            "revenue": _r2(row["revenue"]),
            "average": _r2(row["revenue"] / row["orders"]) if row["orders"] else 0.0,
            "percentage": _r2(row["revenue"] / grand * 100) if grand else 0.0,
        })
    return ok(out, totalRevenue=_r2(grand))


@admin_wallet_bp.route("/api/v1/admin/wallet/top-holders", methods=["GET"])
@admin_required
def top_holders():
    rows = list(balances_col.find({"amount": {"$gt": 0}}).sort("amount", -1).limit(20))
    ids = [r["user_id"] for r in rows]
    users = {u["_id"]: u for u in users_col.find({"_id": {"$in": ids}})} if ids else {}
    return ok([
        {"user": user_summary(users.get(r["user_id"])), "balance": _r2(r.get("amount"))}
        for r in rows
    ])


@admin_wallet_bp.route("/api/v1/admin/wallet/transactions", methods=["GET"])
@admin_required
def all_transactions():
    page, limit, skip = paginate_args(default_limit=20)
    q = {}
    tx_type = (request.args.get("type") or "").strip().lower()
    if tx_type in ("credit", "debit"):
        q["type"] = tx_type
    total = transactions_col.count_documents(q)
    items = list(transactions_col.find(q).sort("created_at", -1).skip(skip).limit(limit))
    ids = list({t["user_id"] for t in items if t.get("user_id")})
    users = {u["_id"]: u for u in users_col.find({"_id": {"$in": ids}})} if ids else {}
    for t in items:
        t["user"] = user_summary(users.get(t.get("user_id")))
    return ok(items, meta=page_meta(total, page, limit))
