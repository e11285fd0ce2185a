# activity.py: admin activity audit trail: recording, change diffs, list/stats/export
from __future__ import annotations

import traceback
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import Blueprint, has_request_context, request, session

from common import (
    admin_required, date_range_query, fail, get_client_ip, jlog, ok, oid,
    page_meta, paginate_args, regex_i, user_summary,
)
from db import db
from exports import EXPORT_FORMATS, export_pdf, export_xlsx, fmt_dt

activity_bp = Blueprint("activity", __name__)

activities_col = db["admin_activities"]
users_col = db["users"]

ACTIVITY_ACTIONS = {
    "create", "update", "delete", "status_change", "refund", "bulk_status_change",
    "bulk_update_products", "create_admin", "create_coupon", "delete_coupon",
    "delete_review", "inventory_adjust", "update_admin_status", "update_coupon",
    "update_review_status", "update_settings", "update_ticket", "update_tracking",
    "wallet_adjust", "create_category", "update_category", "delete_category",
}
ACTIVITY_RESOURCES = {
    "product", "order", "customer", "category", "ticket", "settings",
    "coupon", "review", "system", "user",
}

_MISSING = object()


def log_activity(action: str, resource: str, resource_id=None,
                 details: Optional[str] = None, changes: Optional[Dict[str, Any]] = None,
                 admin_id=None):
    """
    Record one admin action. Uses the session admin unless admin_id is given.
    Never raises to the caller.
    """
    try:
        if action not in ACTIVITY_ACTIONS or resource not in ACTIVITY_RESOURCES:
            jlog("activity_rejected", action=action, resource=resource)
            return None
        in_request = has_request_context()
        actor = oid(admin_id) or (oid(session.get("user_id")) if in_request else None)
        doc = {
            "admin_id": actor,
            "action": action,
            "resource": resource,
            "resource_id": str(resource_id) if resource_id is not None else None,
            "details": details,
            "changes": changes,
            "ip_address": get_client_ip() if in_request else None,
            "user_agent": request.headers.get("User-Agent") if in_request else None,
            "created_at": datetime.utcnow(),
        }
        return activities_col.insert_one(doc).inserted_id
    except Exception:
        jlog("activity_log_error", action=action, resource=resource, error=traceback.format_exc())
        return None


# ===== Change diffs ===========================================================
def _flatten(d: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    out = {}
    for k, v in (d or {}).items():
        path = f"{prefix}.{k}" if prefix else str(k)
        if isinstance(v, dict) and v:
            out.update(_flatten(v, path))
        else:
            out[path] = v
    return out


def diff_changes(before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Field-level diff between two snapshots. Nested dicts become dotted
    paths; lists are compared whole. Unchanged fields are left out.
    """
    b = _flatten(before or {})
    a = _flatten(after or {})
    rows = []
    for field in sorted(set(b) | set(a)):
        old = b.get(field, _MISSING)
        new = a.get(field, _MISSING)
        if old is _MISSING:
            rows.append({"field": field, "before": None, "after": new, "change": "added"})
        elif new is _MISSING:
            rows.append({"field": field, "before": old, "after": None, "change": "removed"})
        elif old != new:
            rows.append({"field": field, "before": old, "after": new, "change": "modified"})
    return rows


def render_changes(changes) -> Optional[Dict[str, Any]]:
    if not isinstance(changes, dict) or not changes:
        return None
    if "before" in changes or "after" in changes:
        before = changes.get("before")
        after = changes.get("after")
        return {
            "mode": "diff",
            "fields": diff_changes(before if isinstance(before, dict) else {},
                                   after if isinstance(after, dict) else {}),
        }
    return {
        "mode": "metadata",
        "fields": [{"field": k, "value": v} for k, v in sorted(_flatten(changes).items())],
    }


def snapshot(doc: Optional[dict], fields) -> Dict[str, Any]:
    """Subset of a document used as a before/after image."""
    doc = doc or {}
    return {f: doc.get(f) for f in fields if f in doc}


# ===== Queries ================================================================
def _build_query(args) -> Dict[str, Any]:
    q: Dict[str, Any] = {}
    resource = (args.get("resource") or "").strip()
    action = (args.get("action") or "").strip()
    admin_id = (args.get("adminId") or args.get("admin_id") or "").strip()
    search = (args.get("search") or "").strip()

    if resource and resource != "all":
        q["resource"] = resource
    if action and action != "all":
        q["action"] = action
    if admin_id and admin_id != "all":
        q["admin_id"] = oid(admin_id) or admin_id

    dr = date_range_query(args.get("startDate"), args.get("endDate"))
    if dr:
        q["created_at"] = dr
    if search:
        q["$or"] = [{"details": regex_i(search)}, {"resource_id": regex_i(search)}]
    return q


def _attach_admins(items: List[dict]) -> List[dict]:
    ids = list({a["admin_id"] for a in items if a.get("admin_id")})
    admins = {u["_id"]: u for u in users_col.find({"_id": {"$in": ids}})} if ids else {}
    for a in items:
        admin = admins.get(a.get("admin_id"))
        a["admin"] = {**user_summary(admin), "role": admin.get("role")} if admin else None
        a["diff"] = render_changes(a.get("changes"))
    return items


def _stats(q: Dict[str, Any]) -> Dict[str, Any]:
    by_type = {
        row["_id"]: row["count"]
        for row in activities_col.aggregate([
            {"$match": q},
            {"$group": {"_id": "$action", "count": {"$sum": 1}}},
        ])
    }
    days = Counter()
    for a in activities_col.find(q, {"created_at": 1}):
        if a.get("created_at"):
            days[a["created_at"].strftime("%Y-%m-%d")] += 1
    return {
        "byType": by_type,
        "byDate": [{"date": d, "count": days[d]} for d in sorted(days)],
    }


@activity_bp.route("/api/v1/admin/activity", methods=["GET"])
@admin_required
def list_activity():
    page, limit, skip = paginate_args(default_limit=50)
    q = _build_query(request.args)
    total = activities_col.count_documents(q)
    items = list(activities_col.find(q).sort("created_at", -1).skip(skip).limit(limit))
    return ok(_attach_admins(items), meta=page_meta(total, page, limit), stats=_stats(q))


@activity_bp.route("/api/v1/admin/activity/export", methods=["GET"])
@admin_required
def export_activity():
    fmt = (request.args.get("format") or "xlsx").lower()
    if fmt not in EXPORT_FORMATS:
        return fail("format must be xlsx or pdf")
    q = _build_query(request.args)
    items = _attach_admins(list(activities_col.find(q).sort("created_at", -1).limit(5000)))

    def _admin_name(a):
        adm = a.get("admin") or {}
        return f"{adm.get('first_name') or ''} {adm.get('last_name') or ''}".strip() or "System"

    def _changed_fields(a):
        d = a.get("diff") or {}
        return ", ".join(f["field"] for f in d.get("fields", []))

    if fmt == "xlsx":
        rows = [{
            "When": fmt_dt(a.get("created_at")),
            "Admin": _admin_name(a),
            "Action": a.get("action"),
            "Resource": a.get("resource"),
            "Resource ID": a.get("resource_id") or "",
            "Details": a.get("details") or "",
            "Changed Fields": _changed_fields(a),
            "IP": a.get("ip_address") or "",
        } for a in items]
        return export_xlsx(rows, "activity_log.xlsx", "Activity")

    rows = [[
        fmt_dt(a.get("created_at")), _admin_name(a), a.get("action"), a.get("resource"),
        (a.get("details") or "")[:80], _changed_fields(a)[:60],
    ] for a in items]
    return export_pdf(
        "Admin Activity Log",
        ["When", "Admin", "Action", "Resource", "Details", "Changed"],
        rows, "activity_log.pdf",
    )


@activity_bp.route("/api/v1/admin/activity/<activity_id>", methods=["GET"])
@admin_required
def get_activity(activity_id):
    aid = oid(activity_id)
    doc = activities_col.find_one({"_id": aid}) if aid else None
    if not doc:
        return fail("Activity not found", 404)
    return ok(_attach_admins([doc])[0])
