# signup.py: customer registration and OTP verification
import random
import re
from datetime import datetime, timedelta

from flask import Blueprint
from markupsafe import escape
from pymongo.errors import DuplicateKeyError
from werkzeug.security import generate_password_hash

from common import body_json, current_user, fail, jlog, normalize_phone, ok, public_user
from db import db
from login import start_session
from notifications import send_email, send_sms

signup_bp = Blueprint("signup", __name__)
users_col = db["users"]

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LEN = 8
OTP_TTL = timedelta(minutes=10)
MAX_OTP_ATTEMPTS = 5


def generate_otp() -> str:
    return str(random.randint(100000, 999999))


def _send_otp(user: dict, otp: str):
    send_sms(user["phone"], f"Your PlugNG verification code is: {otp}")


@signup_bp.route("/api/v1/auth/register", methods=["POST"])
def register():
    data = body_json()
    first_name = (data.get("firstName") or data.get("first_name") or "").strip()
    last_name = (data.get("lastName") or data.get("last_name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    phone = normalize_phone(data.get("phone") or "")
    password = data.get("password") or ""

    # ---- Server-side 'all compulsory' checks ----
    missing = [label for val, label in [
        (first_name, "First name"),
        (last_name, "Last name"),
        (email, "Email"),
        (phone, "Phone"),
        (password, "Password"),
    ] if not val]
    if missing:
        return fail(f"Missing required fields: {', '.join(missing)}")
    if not EMAIL_RE.match(email):
        return fail("Invalid email address")
    if len(password) < MIN_PASSWORD_LEN:
        return fail(f"Password must be at least {MIN_PASSWORD_LEN} characters")

    if users_col.find_one({"$or": [{"email": email}, {"phone": phone}]}):
        return fail("User already exists with that email or phone")

    otp = generate_otp()
    now = datetime.utcnow()
    user = {
        "first_name": first_name,
        "last_name": last_name,
        "email": email,
        "phone": phone,
        "password": generate_password_hash(password),
        "role": "customer",
        "status": "active",
        "addresses": [],
        "email_verified": False,
        "phone_verified": False,
        "total_spent": 0.0,
        "loyalty_tier": "Enthusiast",
        "otp": otp,
        "otp_expires": now + OTP_TTL,
        "last_login": now,
        "created_at": now,
        "updated_at": now,
    }
    try:
        user["_id"] = users_col.insert_one(user).inserted_id
    except DuplicateKeyError:
        return fail("User already exists with that email or phone")

    # OTP + welcome mail are best effort; registration stands either way
    _send_otp(user, otp)
    send_email(
        email, "Welcome to PlugNG!",
        f"<h1>Welcome, {escape(first_name)}!</h1><p>Thanks for joining. Your verification code is <b>{otp}</b>.</p>",
    )
    jlog("user_registered", user_id=str(user["_id"]))

    start_session(user)
    return ok({"user": public_user(user)}, 201)


def _otp_target(data):
    user = current_user()
    if user:
        return user
    phone = normalize_phone(data.get("phone") or "")
    return users_col.find_one({"phone": phone}) if phone else None


@signup_bp.route("/api/v1/auth/verify", methods=["POST"])
def verify_phone():
    data = body_json()
    otp = str(data.get("otp") or "").strip()
    user = _otp_target(data)
    if not user:
        return fail("User not found")
    if int(user.get("otp_attempts") or 0) >= MAX_OTP_ATTEMPTS:
        return fail("Too many incorrect codes. Request a new OTP.", 429)
    if not otp or user.get("otp") != otp:
        users_col.update_one({"_id": user["_id"]}, {"$inc": {"otp_attempts": 1}})
        jlog("otp_verify_failed", user_id=str(user["_id"]))
        return fail("Invalid OTP")
    if user.get("otp_expires") and user["otp_expires"] < datetime.utcnow():
        return fail("OTP has expired")

    res = users_col.update_one(
        {"_id": user["_id"], "otp": otp,
         "$or": [{"otp_attempts": {"$exists": False}}, {"otp_attempts": {"$lt": MAX_OTP_ATTEMPTS}}]},
        {"$set": {"phone_verified": True, "updated_at": datetime.utcnow()},
         "$unset": {"otp": "", "otp_expires": "", "otp_attempts": ""}},
    )
    if not res.modified_count:
        return fail("Invalid OTP")
    return ok(message="Phone verified successfully")


@signup_bp.route("/api/v1/auth/resend-otp", methods=["POST"])
def resend_otp():
    user = _otp_target(body_json())
    if not user:
        return fail("User not found")
    otp = generate_otp()
    users_col.update_one(
        {"_id": user["_id"]},
        {"$set": {"otp": otp, "otp_expires": datetime.utcnow() + OTP_TTL, "otp_attempts": 0}},
    )
    _send_otp(user, otp)
    return ok(message="OTP sent successfully")
