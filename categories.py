# categories.py: category hierarchy (Brand > Type > Specific), public + admin CRUD
from __future__ import annotations

import re
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from flask import Blueprint, request
from pymongo.errors import DuplicateKeyError

from activity import log_activity, snapshot
from common import _to_int, _truthy, admin_required, body_json, fail, ok, oid
from db import db

categories_bp = Blueprint("categories", __name__)

categories_col = db["categories"]
products_col = db["products"]

MAX_LEVEL = 3
EDITABLE_FIELDS = ("name", "description", "image", "icon", "order", "active", "featured",
                   "meta_title", "meta_description")


def slugify(text: str) -> str:
    s = re.sub(r"[^a-z0-9\s-]", "", (text or "").lower()).strip()
    s = re.sub(r"[\s_-]+", "-", s)
    return s.strip("-")


def _all_categories() -> List[dict]:
    return list(categories_col.find({}).sort([("level", 1), ("order", 1), ("name", 1)]))


def descendant_ids(root_id, cats: Optional[List[dict]] = None) -> List:
    """root_id plus every category below it."""
    cats = cats if cats is not None else list(categories_col.find({}, {"parent": 1}))
    children = defaultdict(list)
    for c in cats:
        if c.get("parent"):
            children[c["parent"]].append(c["_id"])
    out, frontier = [root_id], [root_id]
    for _ in range(MAX_LEVEL):
        nxt = []
        for cid in frontier:
            nxt.extend(children.get(cid, []))
        if not nxt:
            break
        out.extend(nxt)
        frontier = nxt
    return out


def full_name(cat: dict, by_id: Dict) -> str:
    names = [cat.get("name", "")]
    parent = by_id.get(cat.get("parent"))
    while parent is not None and len(names) < MAX_LEVEL + 1:
        names.insert(0, parent.get("name", ""))
        parent = by_id.get(parent.get("parent"))
    return " > ".join(names)


def category_by_slug_tree(slug: str) -> Optional[List]:
    cat = categories_col.find_one({"slug": slug})
    if not cat:
        return None
    return descendant_ids(cat["_id"])


# ===== Public =================================================================
@categories_bp.route("/api/v1/categories", methods=["GET"])
def list_categories():
    q = {}
    level = _to_int(request.args.get("level"))
    if level:
        q["level"] = level
    parent = request.args.get("parent")
    if parent is not None:
        if parent in ("", "null", "none"):
            q["parent"] = None
        else:
            pid = oid(parent)
            if not pid:
                return fail("Invalid parent id")
            q["parent"] = pid
    if request.args.get("featured") is not None:
        q["featured"] = _truthy(request.args.get("featured"))
    if request.args.get("active") is not None:
        q["active"] = _truthy(request.args.get("active"))

    by_id = {c["_id"]: c for c in _all_categories()}
    items = list(categories_col.find(q).sort([("level", 1), ("order", 1), ("name", 1)]))
    for c in items:
        c["full_name"] = full_name(c, by_id)
    return ok(items, count=len(items))


@categories_bp.route("/api/v1/categories/tree", methods=["GET"])
def category_tree():
    cats = [c for c in _all_categories() if c.get("active", True)]
    direct_counts = defaultdict(int)
    top_products = defaultdict(list)
    for p in products_col.find(
        {"status": "active"},
        {"name": 1, "slug": 1, "category": 1, "images": 1, "min_price": 1, "sales_count": 1},
    ).sort("sales_count", -1):
        direct_counts[p.get("category")] += 1
        top_products[p.get("category")].append(p)

    children = defaultdict(list)
    for c in cats:
        children[c.get("parent")].append(c)

    def build(node: dict, depth: int) -> dict:
        kids = [build(k, depth + 1) for k in children.get(node["_id"], [])] if depth < MAX_LEVEL else []
        count = direct_counts.get(node["_id"], 0) + sum(k["product_count"] for k in kids)

        pool = list(top_products.get(node["_id"], []))
        for k in kids:
            pool.extend(k.pop("_pool"))
        pool.sort(key=lambda p: p.get("sales_count") or 0, reverse=True)
        seen, previews = set(), []
        for p in pool:
            if p.get("name") in seen:
                continue
            seen.add(p.get("name"))
            previews.append({
                "_id": p["_id"], "name": p.get("name"), "slug": p.get("slug"),
                "price": p.get("min_price"),
                "image": ((p.get("images") or [{}])[0] or {}).get("url"),
            })
            if len(previews) == 3:
                break
        return {**node, "children": kids, "product_count": count,
                "top_products": previews, "_pool": pool}

    roots = [build(c, 1) for c in children.get(None, [])]

    def strip(n):
        n.pop("_pool", None)
        for k in n["children"]:
            strip(k)
        return n

    return ok([strip(r) for r in roots])


@categories_bp.route("/api/v1/categories/<slug>", methods=["GET"])
def get_category(slug):
    cat = categories_col.find_one({"slug": slug})
    if not cat:
        return fail("Category not found", 404)
    by_id = {c["_id"]: c for c in _all_categories()}
    cat["full_name"] = full_name(cat, by_id)
    cat["children"] = list(categories_col.find({"parent": cat["_id"]}).sort([("order", 1), ("name", 1)]))
    return ok(cat)


# ===== Admin ==================================================================
@categories_bp.route("/api/v1/categories", methods=["POST"])
@admin_required
def create_category():
    data = body_json()
    name = (data.get("name") or "").strip()
    if not name:
        return fail("Category name is required")

    parent_id, level = None, 1
    if data.get("parent"):
        parent_id = oid(data.get("parent"))
        parent = categories_col.find_one({"_id": parent_id}) if parent_id else None
        if not parent:
            return fail("Parent category not found", 404)
        level = int(parent.get("level") or 1) + 1
        if level > MAX_LEVEL:
            return fail(f"Categories can only be nested {MAX_LEVEL} levels deep")

    slug = slugify(data.get("slug") or name)
    if not slug:
        return fail("Could not derive a slug from the name")

    now = datetime.utcnow()
    doc = {
        "name": name,
        "slug": slug,
        "description": data.get("description") or "",
        "image": data.get("image"),
        "icon": data.get("icon"),
        "parent": parent_id,
        "level": level,
        "order": _to_int(data.get("order"), 0) or 0,
        "active": _truthy(data.get("active", True)),
        "featured": _truthy(data.get("featured", False)),
        "meta_title": data.get("meta_title"),
        "meta_description": data.get("meta_description"),
        "created_at": now,
        "updated_at": now,
    }
    if categories_col.find_one({"slug": slug}):
        return fail("A category with this slug already exists")
    try:
        doc["_id"] = categories_col.insert_one(doc).inserted_id
    except DuplicateKeyError:
        return fail("A category with this slug already exists")

    log_activity("create_category", "category", doc["_id"], f"Created category {name}",
                 {"before": {}, "after": snapshot(doc, ("name", "slug", "level", "parent"))})
    return ok(doc, 201)


@categories_bp.route("/api/v1/categories/<category_id>", methods=["PUT", "PATCH"])
@admin_required
def update_category(category_id):
    cid = oid(category_id)
    cat = categories_col.find_one({"_id": cid}) if cid else None
    if not cat:
        return fail("Category not found", 404)

    data = body_json()
    update = {}
    for f in EDITABLE_FIELDS:
        if f in data:
            update[f] = data[f]
    if "name" in update:
        update["name"] = (update["name"] or "").strip()
        if not update["name"]:
            return fail("Category name cannot be empty")
    if "active" in update:
        update["active"] = _truthy(update["active"])
    if "featured" in update:
        update["featured"] = _truthy(update["featured"])
    if "order" in update:
        update["order"] = _to_int(update["order"], 0) or 0
    if data.get("slug"):
        slug = slugify(data["slug"])
        if categories_col.find_one({"slug": slug, "_id": {"$ne": cid}}):
            return fail("A category with this slug already exists")
        update["slug"] = slug
    if not update:
        return fail("Nothing to update")

    update["updated_at"] = datetime.utcnow()
    categories_col.update_one({"_id": cid}, {"$set": update})
    fresh = categories_col.find_one({"_id": cid})
    fields = [f for f in update if f != "updated_at"]
    log_activity("update_category", "category", cid, f"Updated category {fresh.get('name')}",
                 {"before": snapshot(cat, fields), "after": snapshot(fresh, fields)})
    return ok(fresh)


@categories_bp.route("/api/v1/categories/<category_id>", methods=["DELETE"])
@admin_required
def delete_category(category_id):
    cid = oid(category_id)
    cat = categories_col.find_one({"_id": cid}) if cid else None
    if not cat:
        return fail("Category not found", 404)
    if categories_col.count_documents({"parent": cid}):
        return fail("Category has sub-categories; delete or move them first")
    if products_col.count_documents({"$or": [{"category": cid}, {"sub_category": cid}]}):
        return fail("Category still has products assigned")
    categories_col.delete_one({"_id": cid})
    log_activity("delete_category", "category", cid, f"Deleted category {cat.get('name')}",
                 {"before": snapshot(cat, ("name", "slug", "level")), "after": {}})
    return ok({"deleted": True})
