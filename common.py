# common.py: shared helpers for every blueprint (logging, JSON, guards, paging)
from __future__ import annotations

import json
import math
import re
from datetime import date, datetime, timedelta
from functools import wraps
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId
from flask import g, jsonify, request, session

from db import db

users_col = db["users"]

ADMIN_ROLES = {"admin", "super_admin", "manager", "support", "editor"}
DEFAULT_LIMIT = 20
MAX_LIMIT = 100

_HEX24 = re.compile(r"^[0-9a-fA-F]{24}$")


# ===== Tiny JSON logger =======================================================
def jlog(event: str, **kv):
    rec = {"evt": event, **kv}
    try:
        print(json.dumps(rec, ensure_ascii=False, separators=(",", ":"), default=str))
    except Exception:
        print(f"[LOG_FALLBACK] {event} {kv}")


# ===== Values =================================================================
def _r2(x) -> float:
    try:
        return round(float(x or 0), 2)
    except Exception:
        return 0.0


def _to_int(x, default=None):
    try:
        return int(x)
    except Exception:
        return default


def _to_float(x, default=None):
    try:
        return float(x)
    except Exception:
        return default


def _truthy(v) -> bool:
    if isinstance(v, bool):
        return v
    return str(v or "").strip().lower() in ("1", "true", "yes", "on")


def oid(x) -> Optional[ObjectId]:
    """ObjectId from a string/ObjectId, or None when it is not a valid id."""
    if isinstance(x, ObjectId):
        return x
    if isinstance(x, str) and _HEX24.match(x.strip()):
        return ObjectId(x.strip())
    return None


def is_object_id(x) -> bool:
    return oid(x) is not None


def regex_i(q: str) -> Dict[str, str]:
    return {"$regex": re.escape(q), "$options": "i"}


def to_json(value: Any) -> Any:
    """Recursively turn Mongo documents into JSON-safe values."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json(v) for v in value]
    return value


# ===== Responses ==============================================================
def ok(data=None, status: int = 200, **extra):
    body = {"success": True}
    if data is not None:
        body["data"] = to_json(data)
    for k, v in extra.items():
        body[k] = to_json(v)
    return jsonify(body), status


def fail(error: str, status: int = 400, **extra):
    body = {"success": False, "error": error}
    for k, v in extra.items():
        body[k] = to_json(v)
    return jsonify(body), status


def body_json() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ===== Paging / dates =========================================================
def paginate_args(default_limit: int = DEFAULT_LIMIT, max_limit: int = MAX_LIMIT) -> Tuple[int, int, int]:
    page = _to_int(request.args.get("page"), 1) or 1
    limit = _to_int(request.args.get("limit") or request.args.get("per_page"), default_limit) or default_limit
    page = max(page, 1)
    limit = max(1, min(limit, max_limit))
    return page, limit, (page - 1) * limit


def page_meta(total: int, page: int, limit: int) -> Dict[str, Any]:
    total_pages = max(1, math.ceil(total / limit)) if limit else 1
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


def parse_date(s) -> Optional[datetime]:
    """Accepts YYYY-MM-DD or an ISO-8601 timestamp (a trailing Z is allowed)."""
    if not s:
        return None
    s = str(s).strip()
    try:
        if len(s) <= 10:
            return datetime.strptime(s, "%Y-%m-%d")
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
        return dt.replace(tzinfo=None) if dt.tzinfo else dt
    except Exception:
        return None


def date_range_query(start_raw, end_raw) -> Dict[str, datetime]:
    """Inclusive start; a bare end date covers the whole day."""
    q = {}
    start = parse_date(start_raw)
    end = parse_date(end_raw)
    if start:
        q["$gte"] = start
    if end:
        if end_raw and len(str(end_raw).strip()) <= 10:
            q["$lt"] = end + timedelta(days=1)
        else:
            q["$lte"] = end
    return q


def month_start(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.utcnow()
    return datetime(now.year, now.month, 1)


def previous_month_start(now: Optional[datetime] = None) -> datetime:
    first = month_start(now)
    prev = first - timedelta(days=1)
    return datetime(prev.year, prev.month, 1)


# ===== Request context ========================================================
def get_client_ip() -> str:
    xfwd = (request.headers.get("X-Forwarded-For") or "").strip()
    if xfwd:
        first = xfwd.split(",")[0].strip()
        if first:
            return first
    xreal = (request.headers.get("X-Real-IP") or "").strip()
    if xreal:
        return xreal
    return request.remote_addr or ""


def public_user(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return None
    hidden = {"password", "otp", "otp_expires"}
    return {k: v for k, v in user.items() if k not in hidden}


def user_summary(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return None
    return {
        "_id": user.get("_id"),
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
        "email": user.get("email"),
        "phone": user.get("phone"),
    }


def current_user() -> Optional[dict]:
    """
    The logged-in, active user for this request (cached on flask.g).
    A session pointing at a missing or suspended user is cleared.
    """
    if "current_user" in g:
        return g.current_user
    user = None
    uid = oid(session.get("user_id"))
    if uid:
        user = users_col.find_one({"_id": uid})
        if not user or (user.get("status") or "active") != "active":
            session.clear()
            user = None
    g.current_user = user
    return user


def is_admin(user: Optional[dict]) -> bool:
    return bool(user) and user.get("role") in ADMIN_ROLES


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user():
            return fail("Unauthorized", 401)
        return f(*args, **kwargs)

    return decorated_function


def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = current_user()
        if not user:
            return fail("Unauthorized", 401)
        if not is_admin(user):
            return fail("Admin access required", 403)
        return f(*args, **kwargs)

    return decorated_function


def normalize_phone(raw: str) -> str:
    """Normalize Nigerian numbers to '0XXXXXXXXXX' where possible."""
    digits = re.sub(r"\D", "", raw or "")
    if not digits:
        return ""
    if digits.startswith("234") and len(digits) == 13:
        return "0" + digits[3:]
    if len(digits) == 10 and not digits.startswith("0"):
        return "0" + digits
    return digits
