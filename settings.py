# settings.py: runtime store settings (delivery fees, discounts, newsletter coupon, ...)
from datetime import datetime

from flask import Blueprint

from activity import log_activity
from common import admin_required, body_json, current_user, fail, ok
from db import db

settings_bp = Blueprint("settings", __name__)

settings_col = db["settings"]

SETTING_CATEGORIES = ("general", "delivery", "payment", "email", "sms")


def get_setting(category: str, key: str, default=None):
    """Stored value for (category, key), or default when unset/unreadable."""
    try:
        doc = settings_col.find_one({"category": category, "key": key})
    except Exception:
        return default
    if not doc or doc.get("value") is None:
        return default
    return doc["value"]


def get_number_setting(category: str, key: str, default: float) -> float:
    try:
        return float(get_setting(category, key, default))
    except (TypeError, ValueError):
        return default


@settings_bp.route("/api/v1/admin/settings", methods=["GET"])
@admin_required
def list_settings():
    items = list(settings_col.find({}).sort([("category", 1), ("key", 1)]))
    grouped = {c: {} for c in SETTING_CATEGORIES}
    for s in items:
        grouped.setdefault(s.get("category"), {})[s.get("key")] = s.get("value")
    return ok(items, grouped=grouped)


@settings_bp.route("/api/v1/admin/settings", methods=["PATCH", "PUT"])
@admin_required
def update_settings():
    data = body_json()
    entries = data.get("settings")
    if not isinstance(entries, list) or not entries:
        return fail("Settings must be an array")

    cleaned = []
    for e in entries:
        if not isinstance(e, dict):
            return fail("Each setting must be an object")
        category = (e.get("category") or "").strip()
        key = (e.get("key") or "").strip()
        if category not in SETTING_CATEGORIES:
            return fail(f"Invalid settings category: {category or '(empty)'}")
        if not key:
            return fail("Setting key is required")
        cleaned.append((category, key, e.get("value"), e.get("description")))

    admin = current_user()
    now = datetime.utcnow()
    before, after = {}, {}
    for category, key, value, description in cleaned:
        prev = settings_col.find_one({"category": category, "key": key})
        before.setdefault(category, {})[key] = prev.get("value") if prev else None
        after.setdefault(category, {})[key] = value

        update = {"value": value, "updated_by": admin["_id"], "updated_at": now}
        if description is not None:
            update["description"] = description
        settings_col.update_one(
            {"category": category, "key": key},
            {"$set": update, "$setOnInsert": {"created_at": now}},
            upsert=True,
        )

    log_activity(
        "update_settings", "settings",
        details=f"Updated {len(cleaned)} setting(s)",
        changes={"before": before, "after": after},
    )
    items = list(settings_col.find({}).sort([("category", 1), ("key", 1)]))
    return ok(items)
