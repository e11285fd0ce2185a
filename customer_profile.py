# customer_profile.py: profile, saved addresses, password change
from datetime import datetime

from bson import ObjectId
from flask import Blueprint
from werkzeug.security import check_password_hash, generate_password_hash

from common import _truthy, body_json, current_user, fail, login_required, ok, oid, public_user
from db import db
from signup import MIN_PASSWORD_LEN
from wallet import get_balance

customer_profile_bp = Blueprint("customer_profile", __name__)
users_col = db["users"]

ADDRESS_FIELDS = ("label", "full_name", "phone", "address", "city", "state", "landmark")
REQUIRED_ADDRESS_FIELDS = ("full_name", "phone", "address", "city", "state")


def _profile(user_id):
    user = users_col.find_one({"_id": user_id})
    data = public_user(user)
    data["wallet_balance"] = get_balance(user_id)
    return data


@customer_profile_bp.route("/api/v1/users/me", methods=["GET"])
@login_required
def get_profile():
    return ok(_profile(current_user()["_id"]))


@customer_profile_bp.route("/api/v1/users/me", methods=["PUT", "PATCH"])
@login_required
def update_profile():
    user = current_user()
    data = body_json()
    update = {}
    for src, dst in (("firstName", "first_name"), ("lastName", "last_name"),
                     ("first_name", "first_name"), ("last_name", "last_name")):
        if src in data:
            val = (data.get(src) or "").strip()
            if not val:
                return fail(f"{dst.replace('_', ' ').capitalize()} cannot be empty")
            update[dst] = val
    if not update:
        return fail("Nothing to update")
    update["updated_at"] = datetime.utcnow()
    users_col.update_one({"_id": user["_id"]}, {"$set": update})
    return ok(_profile(user["_id"]))


@customer_profile_bp.route("/api/v1/users/address", methods=["POST"])
@login_required
def add_address():
    user = current_user()
    data = body_json()
    data = {("full_name" if k == "fullName" else k): v for k, v in data.items()}
    addr = {f: (str(data.get(f) or "")).strip() for f in ADDRESS_FIELDS}
    missing = [f for f in REQUIRED_ADDRESS_FIELDS if not addr[f]]
    if missing:
        return fail(f"Missing address fields: {', '.join(missing)}")

    addresses = list(user.get("addresses") or [])
    addr["_id"] = ObjectId()
    addr["is_default"] = _truthy(data.get("isDefault") or data.get("is_default")) or not addresses
    if addr["is_default"]:
        for a in addresses:
            a["is_default"] = False
    addresses.append(addr)
    users_col.update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": datetime.utcnow()}})
    return ok(addresses, 201)


@customer_profile_bp.route("/api/v1/users/address/<address_id>", methods=["DELETE"])
@login_required
def delete_address(address_id):
    user = current_user()
    aid = oid(address_id)
    addresses = list(user.get("addresses") or [])
    remaining = [a for a in addresses if a.get("_id") != aid]
    if len(remaining) == len(addresses):
        return fail("Address not found", 404)
    if remaining and not any(a.get("is_default") for a in remaining):
        remaining[0]["is_default"] = True
    users_col.update_one({"_id": user["_id"]}, {"$set": {"addresses": remaining, "updated_at": datetime.utcnow()}})
    return ok(remaining)


@customer_profile_bp.route("/api/v1/users/address/<address_id>/default", methods=["PATCH"])
@login_required
def set_default_address(address_id):
    user = current_user()
    aid = oid(address_id)
    addresses = list(user.get("addresses") or [])
    if not any(a.get("_id") == aid for a in addresses):
        return fail("Address not found", 404)
    for a in addresses:
        a["is_default"] = a.get("_id") == aid
    users_col.update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": datetime.utcnow()}})
    return ok(addresses)


@customer_profile_bp.route("/api/v1/users/password", methods=["PATCH"])
@login_required
def change_password():
    user = current_user()
    data = body_json()
    current = data.get("currentPassword") or ""
    new = data.get("newPassword") or ""
    if not check_password_hash(user.get("password", ""), current):
        return fail("Current password is incorrect", 401)
    if len(new) < MIN_PASSWORD_LEN:
        return fail(f"Password must be at least {MIN_PASSWORD_LEN} characters")
    users_col.update_one(
        {"_id": user["_id"]},
        {"$set": {"password": generate_password_hash(new), "updated_at": datetime.utcnow()}},
    )
    return ok(message="Password updated successfully")
