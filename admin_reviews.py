# admin_reviews.py: review moderation
from datetime import datetime

from flask import Blueprint, request

from activity import log_activity
from catalog import products_col
from common import (
    _to_int, admin_required, body_json, fail, ok, oid, page_meta, paginate_args, user_summary,
)
from reviews import REVIEW_STATUSES, reviews_col, users_col

admin_reviews_bp = Blueprint("admin_reviews", __name__)


@admin_reviews_bp.route("/api/v1/admin/reviews", methods=["GET"])
@admin_required
def list_reviews():
    page, limit, skip = paginate_args(default_limit=20)
    q = {}
    status = (request.args.get("status") or "").strip().lower()
    if status in REVIEW_STATUSES:
        q["status"] = status
    rating = _to_int(request.args.get("rating"))
    if rating and 1 <= rating <= 5:
        q["rating"] = rating

    total = reviews_col.count_documents(q)
    items = list(reviews_col.find(q).sort("created_at", -1).skip(skip).limit(limit))
    uids = list({r["user_id"] for r in items})
    pids = list({r["product_id"] for r in items})
    users = {u["_id"]: u for u in users_col.find({"_id": {"$in": uids}})} if uids else {}
    products = {p["_id"]: p for p in products_col.find({"_id": {"$in": pids}}, {"name": 1, "slug": 1})} if pids else {}
    for r in items:
        r["user"] = user_summary(users.get(r["user_id"]))
        r["product"] = products.get(r["product_id"])
    return ok(items, meta=page_meta(total, page, limit))


@admin_reviews_bp.route("/api/v1/admin/reviews/<review_id>/status", methods=["PATCH"])
@admin_required
def update_review_status(review_id):
    rid = oid(review_id)
    review = reviews_col.find_one({"_id": rid}) if rid else None
    if not review:
        return fail("Review not found", 404)
    status = (body_json().get("status") or "").strip().lower()
    if status not in REVIEW_STATUSES:
        return fail(f"Status must be one of: {', '.join(REVIEW_STATUSES)}")

    reviews_col.update_one({"_id": rid}, {"$set": {"status": status, "updated_at": datetime.utcnow()}})
    log_activity("update_review_status", "review", rid, f"Review marked {status}",
                 {"before": {"status": review.get("status")}, "after": {"status": status}})
    review["status"] = status
    return ok(review)


@admin_reviews_bp.route("/api/v1/admin/reviews/<review_id>", methods=["DELETE"])
@admin_required
def delete_review(review_id):
    rid = oid(review_id)
    review = reviews_col.find_one({"_id": rid}) if rid else None
    if not review:
        return fail("Review not found", 404)
    reviews_col.delete_one({"_id": rid})
    log_activity("delete_review", "review", rid, "Deleted review",
                 {"before": {"rating": review.get("rating"), "status": review.get("status"),
                             "comment": review.get("comment")}, "after": {}})
    return ok(message="Review deleted")
