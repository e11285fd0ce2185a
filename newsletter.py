# newsletter.py: newsletter signups with a welcome coupon
import re
from datetime import datetime

from flask import Blueprint
from pymongo.errors import DuplicateKeyError

from common import body_json, fail, jlog, ok
from db import db
from notifications import send_email
from settings import get_setting

newsletter_bp = Blueprint("newsletter", __name__)

newsletter_col = db["newsletter"]

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
DEFAULT_WELCOME_COUPON = "WELCOME500"


@newsletter_bp.route("/api/v1/newsletter/subscribe", methods=["POST"])
def subscribe():
    email = (body_json().get("email") or "").strip().lower()
    if not email:
        return fail("Email is required")
    if not EMAIL_RE.match(email):
        return fail("Please provide a valid email address")

    coupon = get_setting("general", "newsletter_coupon", DEFAULT_WELCOME_COUPON)
    already = bool(newsletter_col.find_one({"email": email}))
    if not already:
        try:
            newsletter_col.insert_one({"email": email, "created_at": datetime.utcnow()})
        except DuplicateKeyError:
            already = True
        else:
            send_email(
                email, "Welcome to the PlugNG newsletter",
                f"<p>Thanks for subscribing! Use code <b>{coupon}</b> on your next order.</p>",
            )
            jlog("newsletter_subscribed", email=email)

    return ok({"couponCode": coupon, "alreadySubscribed": already},
              message="Subscribed successfully")
