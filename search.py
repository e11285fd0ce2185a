# search.py: instant search box suggestions
from flask import Blueprint, request

from catalog import primary_image, products_col
from categories import categories_col
from common import ok, regex_i

search_bp = Blueprint("search", __name__)

MIN_QUERY = 2


@search_bp.route("/api/v1/search/instant", methods=["GET"])
def instant_search():
    q = (request.args.get("q") or "").strip()
    if len(q) < MIN_QUERY:
        return ok({"products": [], "categories": [], "brands": []})

    rx = regex_i(q)
    products = []
    for p in products_col.find(
        {"status": "active", "$or": [{"name": rx}, {"compatibility.brands": rx}]},
        {"name": 1, "slug": 1, "images": 1, "min_price": 1},
    ).sort("sales_count", -1).limit(5):
        products.append({
            "_id": p["_id"],
            "name": p.get("name"),
            "slug": p.get("slug"),
            "price": p.get("min_price"),
            "image": primary_image(p),
        })

    categories = list(
        categories_col.find({"active": True, "name": rx}, {"name": 1, "slug": 1, "level": 1}).limit(3)
    )

    ql = q.lower()
    brands = []
    for b in sorted(products_col.distinct("compatibility.brands", {"status": "active"})):
        if b and ql in b.lower() and b not in brands:
            brands.append(b)
        if len(brands) == 3:
            break

    return ok({"products": products, "categories": categories, "brands": brands})
