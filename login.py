# login.py
from datetime import datetime

from flask import Blueprint, current_app, g, request, session
from werkzeug.security import check_password_hash

from common import (
    body_json, current_user, fail, get_client_ip, jlog, normalize_phone, ok, public_user,
)
from db import db

login_bp = Blueprint("login", __name__)
users_col = db["users"]
login_logs_col = db["login_logs"]


# ---------------------------
# Helpers
# ---------------------------

def build_device_info() -> dict:
    """
    Parse basic device info from the User-Agent header.
    Kept simple (no external ua parser).
    """
    ua_str = request.headers.get("User-Agent", "")
    s = ua_str.lower()

    is_tablet = ("ipad" in s) or ("tablet" in s)
    is_mobile = ("mobile" in s or "android" in s or "iphone" in s) and not is_tablet

    return {
        "ua_string": ua_str,
        "accepted_languages": [l[0] for l in request.accept_languages] if request.accept_languages else [],
        "is_mobile": is_mobile,
        "is_tablet": is_tablet,
        "device_label": "mobile" if is_mobile else ("tablet" if is_tablet else "desktop"),
    }


def log_login_event(user: dict, success: bool, reason: str = "", identifier: str = "") -> None:
    """
    Inserts a login log document. Never raises to caller.
    """
    try:
        log_doc = {
            "user_id": user.get("_id") if user else None,
            "email": (user or {}).get("email") or identifier or None,
            "role": (user or {}).get("role", "unknown"),
            "success": bool(success),
            "reason": reason or None,
            "ip": get_client_ip(),
            "forwarded_for": request.headers.get("X-Forwarded-For"),
            "x_real_ip": request.headers.get("X-Real-IP"),
            "user_agent": request.headers.get("User-Agent"),
            "device": build_device_info(),
            "created_at": datetime.utcnow(),
        }
        login_logs_col.insert_one(log_doc)
    except Exception as e:
        jlog("login_log_insert_failed", error=str(e))


def start_session(user: dict) -> None:
    session.clear()
    session["user_id"] = str(user["_id"])
    session["role"] = user.get("role", "customer")
    session.permanent = True
    session.modified = True
    g.pop("current_user", None)


def find_user_by_identifier(identifier: str):
    ident = (identifier or "").strip()
    if not ident:
        return None
    return users_col.find_one({"$or": [{"email": ident.lower()}, {"phone": normalize_phone(ident) or ident}]})


# ---------------------------
# Keep sessions permanent while logged in
# ---------------------------

@login_bp.before_app_request
def _keep_permanent_session():
    if session.get("user_id"):
        session.permanent = True


# ---------------------------
# Routes
# ---------------------------

@login_bp.route("/api/v1/auth/login", methods=["POST"])
def login():
    data = body_json()
    identifier = (data.get("email") or data.get("emailOrPhone") or "").strip()
    password = data.get("password") or ""

    if not identifier or not password:
        return fail("Please provide email and password")

    user = find_user_by_identifier(identifier)

    # Invalid credentials (user missing or password mismatch)
    if (not user) or (not check_password_hash(user.get("password", ""), password)):
        log_login_event(user, success=False, reason="invalid_credentials", identifier=identifier)
        return fail("Incorrect email or password", 401)

    # Suspended status check AFTER password is correct
    if (user.get("status") or "active").lower() == "suspended":
        log_login_event(user, success=False, reason="suspended")
        return fail("Your account is suspended. Please contact support.", 403)

    now = datetime.utcnow()
    users_col.update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now

    start_session(user)
    log_login_event(user, success=True)
    return ok({"user": public_user(user)})


@login_bp.route("/api/v1/auth/logout", methods=["GET", "POST"])
def logout():
    session.clear()
    resp, status = ok(message="Logged out successfully")
    cookie_name = current_app.config.get("SESSION_COOKIE_NAME", "session")
    resp.delete_cookie(cookie_name)
    return resp, status


@login_bp.route("/api/v1/auth/me", methods=["GET"])
def me():
    user = current_user()
    if not user:
        return fail("Unauthorized", 401)
    return ok({"user": public_user(user)})
