# admin_users.py: back-office accounts
from datetime import datetime

from flask import Blueprint, request
from pymongo.errors import DuplicateKeyError
from werkzeug.security import generate_password_hash

from activity import log_activity
from common import (
    ADMIN_ROLES, admin_required, body_json, current_user, fail, normalize_phone, ok, oid,
    page_meta, paginate_args, public_user, regex_i,
)
from db import db
from signup import EMAIL_RE, MIN_PASSWORD_LEN

admin_users_bp = Blueprint("admin_users", __name__)
users_col = db["users"]

ADMIN_STATUSES = {"active", "suspended"}


@admin_users_bp.route("/api/v1/admin/admins", methods=["GET"])
@admin_required
def list_admins():
    page, limit, skip = paginate_args(default_limit=50)
    q = {"role": {"$in": sorted(ADMIN_ROLES)}}
    search = (request.args.get("search") or "").strip()
    if search:
        rx = regex_i(search)
        q["$or"] = [{"first_name": rx}, {"last_name": rx}, {"email": rx}]
    total = users_col.count_documents(q)
    admins = [public_user(u) for u in users_col.find(q).sort("created_at", -1).skip(skip).limit(limit)]
    return ok(admins, meta=page_meta(total, page, limit))


@admin_users_bp.route("/api/v1/admin/admins", methods=["POST"])
@admin_required
def create_admin():
    data = body_json()
    first_name = (data.get("firstName") or data.get("first_name") or "").strip()
    last_name = (data.get("lastName") or data.get("last_name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    phone = normalize_phone(data.get("phone") or "")
    password = data.get("password") or ""
    role = (data.get("role") or "admin").strip().lower()

    if not (first_name and last_name and email and phone and password):
        return fail("First name, last name, email, phone and password are required")
    if not EMAIL_RE.match(email):
        return fail("Invalid email address")
    if len(password) < MIN_PASSWORD_LEN:
        return fail(f"Password must be at least {MIN_PASSWORD_LEN} characters")
    if role not in ADMIN_ROLES:
        return fail(f"Role must be one of: {', '.join(sorted(ADMIN_ROLES))}")
    if users_col.find_one({"$or": [{"email": email}, {"phone": phone}]}):
        return fail("User already exists with that email or phone")

    now = datetime.utcnow()
    user = {
        "first_name": first_name,
        "last_name": last_name,
        "email": email,
        "phone": phone,
        "password": generate_password_hash(password),
        "role": role,
        "status": "active",
        "addresses": [],
        "email_verified": True,
        "phone_verified": True,
        "created_by": current_user()["_id"],
        "created_at": now,
        "updated_at": now,
    }
    try:
        user["_id"] = users_col.insert_one(user).inserted_id
    except DuplicateKeyError:
        return fail("User already exists with that email or phone")

    log_activity("create_admin", "user", user["_id"], f"Created {role} {email}",
                 {"before": {}, "after": {"email": email, "role": role, "status": "active"}})
    return ok(public_user(user), 201)


@admin_users_bp.route("/api/v1/admin/admins/<admin_id>/status", methods=["PATCH"])
@admin_required
def update_admin_status(admin_id):
    aid = oid(admin_id)
    target = users_col.find_one({"_id": aid, "role": {"$in": sorted(ADMIN_ROLES)}}) if aid else None
    if not target:
        return fail("Admin not found", 404)

    status = (body_json().get("status") or "").strip().lower()
    if status not in ADMIN_STATUSES:
        return fail("Status must be active or suspended")
    if target["_id"] == current_user()["_id"] and status == "suspended":
        return fail("You cannot suspend your own account")

    old = target.get("status") or "active"
    users_col.update_one({"_id": target["_id"]}, {"$set": {"status": status, "updated_at": datetime.utcnow()}})
    log_activity("update_admin_status", "user", target["_id"],
                 f"Admin {target.get('email')} set to {status}",
                 {"before": {"status": old}, "after": {"status": status}})
    return ok({"_id": target["_id"], "status": status})
