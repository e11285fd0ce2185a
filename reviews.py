# reviews.py: verified-purchase product reviews
from datetime import datetime

from flask import Blueprint
from pymongo.errors import DuplicateKeyError

from catalog import products_col
from common import _to_int, body_json, current_user, fail, login_required, ok, oid
from db import db

reviews_bp = Blueprint("reviews", __name__)

reviews_col = db["reviews"]
orders_col = db["orders"]
users_col = db["users"]

REVIEW_STATUSES = ("pending", "approved", "rejected")


@reviews_bp.route("/api/v1/reviews", methods=["POST"])
@login_required
def create_review():
    user = current_user()
    data = body_json()
    product_id = oid(data.get("productId") or data.get("product"))
    rating = _to_int(data.get("rating"))
    comment = (data.get("comment") or "").strip()

    if not product_id:
        return fail("Product is required")
    if rating is None or not 1 <= rating <= 5:
        return fail("Rating must be a whole number between 1 and 5")
    if not comment:
        return fail("Comment is required")
    if not products_col.find_one({"_id": product_id}, {"_id": 1}):
        return fail("Product not found", 404)

    order_q = {"user_id": user["_id"], "delivery_status": "delivered", "items.product_id": product_id}
    requested_order = oid(data.get("orderId") or data.get("order"))
    if requested_order:
        order_q["_id"] = requested_order
    order = orders_col.find_one(order_q, sort=[("delivered_at", -1)])
    if not order:
        return fail("You can only review products from your delivered orders")

    if reviews_col.find_one({"user_id": user["_id"], "product_id": product_id, "order_id": order["_id"]}):
        return fail("You have already reviewed this product for this order")

    images = [str(i) for i in (data.get("images") or []) if i][:5]
    now = datetime.utcnow()
    review = {
        "user_id": user["_id"],
        "product_id": product_id,
        "order_id": order["_id"],
        "rating": rating,
        "comment": comment,
        "images": images,
        "status": "pending",
        "created_at": now,
        "updated_at": now,
    }
    try:
        review["_id"] = reviews_col.insert_one(review).inserted_id
    except DuplicateKeyError:
        return fail("You have already reviewed this product for this order")
    return ok(review, 201, message="Review submitted for moderation")


@reviews_bp.route("/api/v1/reviews/product/<product_id>", methods=["GET"])
def product_reviews(product_id):
    pid = oid(product_id)
    if not pid:
        return fail("Invalid product id")
    items = list(reviews_col.find({"product_id": pid, "status": "approved"}).sort("created_at", -1))
    uids = list({r["user_id"] for r in items})
    users = {u["_id"]: u for u in users_col.find({"_id": {"$in": uids}}, {"first_name": 1, "last_name": 1})} if uids else {}
    for r in items:
        u = users.get(r["user_id"]) or {}
        r["user"] = {"first_name": u.get("first_name"), "last_name": u.get("last_name")}
    avg = round(sum(r["rating"] for r in items) / len(items), 1) if items else 0
    return ok(items, count=len(items), averageRating=avg)


@reviews_bp.route("/api/v1/reviews/my-reviews", methods=["GET"])
@login_required
def my_reviews():
    user = current_user()
    items = list(reviews_col.find({"user_id": user["_id"]}).sort("created_at", -1))
    pids = list({r["product_id"] for r in items})
    products = {p["_id"]: p for p in products_col.find({"_id": {"$in": pids}}, {"name": 1, "slug": 1})} if pids else {}
    for r in items:
        r["product"] = products.get(r["product_id"])
    return ok(items, count=len(items))
