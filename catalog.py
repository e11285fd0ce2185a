# catalog.py: product documents, derived fields, stock moves, and the public product API
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from flask import Blueprint, request
from pymongo import ReturnDocument

from categories import categories_col, category_by_slug_tree
from common import (
    _r2, _to_float, _truthy, fail, is_object_id, jlog, ok, oid, paginate_args, regex_i,
)
from db import db

catalog_bp = Blueprint("catalog", __name__)

products_col = db["products"]

PRODUCT_STATUSES = {"active", "draft", "out_of_stock"}
COLOR_OPTION_NAMES = {"color", "colour"}
SORTS = {
    "price-asc": [("min_price", 1), ("_id", 1)],
    "price-desc": [("min_price", -1), ("_id", 1)],
    "newest": [("created_at", -1), ("_id", -1)],
    "popular": [("sales_count", -1), ("_id", -1)],
}


# ===== Document helpers =======================================================
def derive_product_fields(product: Dict[str, Any]) -> Dict[str, Any]:
    """Denormalized fields used for filtering and sorting."""
    variants = product.get("variants") or []
    prices = [float(v.get("selling_price") or 0) for v in variants]
    colors = []
    for opt in product.get("options") or []:
        if (opt.get("name") or "").strip().lower() in COLOR_OPTION_NAMES:
            colors.extend(v.get("value") for v in opt.get("values") or [] if v.get("value"))
    return {
        "min_price": _r2(min(prices)) if prices else 0.0,
        "total_stock": sum(int(v.get("stock") or 0) for v in variants),
        "on_sale": any(
            float(v.get("compare_at_price") or 0) > float(v.get("selling_price") or 0)
            for v in variants
        ),
        "colors": sorted(set(colors)),
    }


def find_variant(product: dict, variant_id=None, sku: Optional[str] = None) -> Optional[dict]:
    for v in product.get("variants") or []:
        if variant_id is not None and str(v.get("_id")) == str(variant_id):
            return v
        if sku and (v.get("sku") or "").upper() == sku.upper():
            return v
    return None


def primary_image(product: dict) -> Optional[str]:
    images = product.get("images") or []
    for img in images:
        if img.get("is_primary"):
            return img.get("url")
    return images[0].get("url") if images else None


def find_product(ident: str) -> Optional[dict]:
    if is_object_id(ident):
        return products_col.find_one({"_id": oid(ident)})
    return products_col.find_one({"slug": ident})


def move_stock(product_id, sku: str, delta: int, floor_zero: bool = True) -> Tuple[Optional[dict], Optional[dict]]:
    """
    Apply delta to one variant's stock and refresh derived fields/status.
    Returns (updated product, variant after the move).
    """
    product = products_col.find_one({"_id": product_id})
    if not product:
        return None, None
    variants = product.get("variants") or []
    target = None
    for v in variants:
        if (v.get("sku") or "").upper() == (sku or "").upper():
            new_stock = int(v.get("stock") or 0) + int(delta)
            v["stock"] = max(0, new_stock) if floor_zero else new_stock
            target = v
            break
    if target is None:
        return product, None
    return _save_variants(product, variants), target


def set_stock(product_id, sku: str, stock: int) -> Tuple[Optional[dict], Optional[dict]]:
    product = products_col.find_one({"_id": product_id})
    if not product:
        return None, None
    variants = product.get("variants") or []
    target = find_variant(product, sku=sku)
    if target is None:
        return product, None
    target["stock"] = max(0, int(stock))
    return _save_variants(product, variants), target


def _save_variants(product: dict, variants: List[dict]) -> dict:
    derived = derive_product_fields({**product, "variants": variants})
    update = {"variants": variants, "updated_at": datetime.utcnow(), **derived}
    status = product.get("status")
    if derived["total_stock"] <= 0 and status == "active":
        update["status"] = "out_of_stock"
    elif derived["total_stock"] > 0 and status == "out_of_stock":
        update["status"] = "active"
    return products_col.find_one_and_update(
        {"_id": product["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER,
    )


def deduct_order_stock(order: dict) -> List[Tuple[dict, dict]]:
    """
    Decrement stock and bump sales_count for every order line.
    Returns (product, variant) pairs that are now at or below the low-stock threshold.
    """
    low = []
    for item in order.get("items") or []:
        pid = item.get("product_id")
        qty = int(item.get("quantity") or 0)
        products_col.update_one({"_id": pid}, {"$inc": {"sales_count": qty}})
        product, variant = move_stock(pid, item.get("sku"), -qty)
        if not product or not variant:
            jlog("stock_deduct_missing", product_id=str(pid), sku=item.get("sku"))
            continue
        threshold = int(product.get("low_stock_threshold") or 10)
        if int(variant.get("stock") or 0) <= threshold:
            low.append((product, variant))
    return low


def restock_order(order: dict):
    for item in order.get("items") or []:
        pid = item.get("product_id")
        qty = int(item.get("quantity") or 0)
        products_col.update_one({"_id": pid}, {"$inc": {"sales_count": -qty}})
        move_stock(pid, item.get("sku"), qty)


# ===== Queries ================================================================
def _csv(v: Optional[str]) -> List[str]:
    return [s.strip() for s in (v or "").split(",") if s.strip()]


def build_product_query(args) -> Optional[Dict[str, Any]]:
    """Mongo filter for the storefront list, or None when nothing can match."""
    q: Dict[str, Any] = {"status": "active"}
    and_: List[Dict[str, Any]] = []

    category = (args.get("category") or "").strip()
    if category:
        ids = category_by_slug_tree(category)
        if not ids:
            return None
        and_.append({"$or": [{"category": {"$in": ids}}, {"sub_category": {"$in": ids}}]})

    price = {}
    min_price = _to_float(args.get("minPrice"))
    max_price = _to_float(args.get("maxPrice"))
    if min_price is not None:
        price["$gte"] = min_price
    if max_price is not None:
        price["$lte"] = max_price
    if price:
        q["variants.selling_price"] = price

    if _truthy(args.get("inStock")):
        q["total_stock"] = {"$gt": 0}
    if _truthy(args.get("onSale")):
        q["on_sale"] = True
    if _truthy(args.get("featured")):
        q["featured"] = True
    if _truthy(args.get("trending")):
        q["sales_count"] = {"$gt": 0}

    brands = _csv(args.get("brands"))
    if brands:
        q["compatibility.brands"] = {"$in": brands}
    colors = _csv(args.get("colors"))
    if colors:
        q["colors"] = {"$in": colors}

    search = (args.get("search") or "").strip()
    if search:
        rx = regex_i(search)
        and_.append({"$or": [{"name": rx}, {"description": rx}, {"compatibility.brands": rx}]})

    if and_:
        q["$and"] = and_
    return q


def _with_category(products: List[dict]) -> List[dict]:
    ids = list({p.get("category") for p in products if p.get("category")})
    cats = {c["_id"]: c for c in categories_col.find({"_id": {"$in": ids}}, {"name": 1, "slug": 1})} if ids else {}
    for p in products:
        p["category_info"] = cats.get(p.get("category"))
        for v in p.get("variants") or []:
            v.pop("cost_price", None)
    return products


# ===== Routes =================================================================
@catalog_bp.route("/api/v1/products", methods=["GET"])
def list_products():
    page, limit, skip = paginate_args(default_limit=20)
    q = build_product_query(request.args)
    if q is None:
        return ok([], total=0, page=page, pages=0)

    sort = SORTS.get((request.args.get("sort") or "newest").strip(), SORTS["newest"])
    total = products_col.count_documents(q)
    items = list(products_col.find(q).sort(sort).skip(skip).limit(limit))
    pages = (total + limit - 1) // limit
    return ok(_with_category(items), total=total, page=page, pages=pages)


@catalog_bp.route("/api/v1/products/filters/options", methods=["GET"])
def filter_options():
    brands, colors = set(), set()
    for p in products_col.find({"status": "active"}, {"compatibility.brands": 1, "colors": 1}):
        brands.update(b for b in (p.get("compatibility") or {}).get("brands") or [] if b)
        colors.update(c for c in p.get("colors") or [] if c)
    return ok({"brands": sorted(brands), "colors": sorted(colors)})


@catalog_bp.route("/api/v1/products/<ident>", methods=["GET"])
def get_product(ident):
    product = find_product(ident)
    if not product or product.get("status") == "draft":
        return fail("Product not found", 404)
    products_col.update_one({"_id": product["_id"]}, {"$inc": {"views": 1}})
    product["views"] = int(product.get("views") or 0) + 1
    return ok(_with_category([product])[0])
