from __future__ import annotations

import os
import traceback
from datetime import datetime, timedelta

from dotenv import load_dotenv

# Load .env before any module reads its settings
load_dotenv()

from flask import Flask, request  # noqa: E402
from werkzeug.exceptions import HTTPException  # noqa: E402

from common import fail, jlog  # noqa: E402
from db import ensure_indexes  # noqa: E402

from activity import activity_bp  # noqa: E402
from admin_coupons import admin_coupons_bp  # noqa: E402
from admin_customers import admin_customers_bp  # noqa: E402
from admin_dashboard import admin_dashboard_bp  # noqa: E402
from admin_orders import admin_orders_bp  # noqa: E402
from admin_products import admin_products_bp  # noqa: E402
from admin_reviews import admin_reviews_bp  # noqa: E402
from admin_sidebar import admin_sidebar_bp  # noqa: E402
from admin_tickets import admin_tickets_bp  # noqa: E402
from admin_users import admin_users_bp  # noqa: E402
from admin_wallet import admin_wallet_bp  # noqa: E402
from cart_api import cart_api_bp  # noqa: E402
from catalog import catalog_bp  # noqa: E402
from categories import categories_bp  # noqa: E402
from checkout import checkout_bp  # noqa: E402
from coupons import coupons_bp  # noqa: E402
from customer_profile import customer_profile_bp  # noqa: E402
from login import login_bp  # noqa: E402
from login_logs import login_logs_bp  # noqa: E402
from media import media_bp  # noqa: E402
from newsletter import newsletter_bp  # noqa: E402
from notifications import notifications_bp  # noqa: E402
from order_tracking import order_tracking_bp  # noqa: E402
from orders import orders_bp  # noqa: E402
from reviews import reviews_bp  # noqa: E402
from scheduler import start_scheduler  # noqa: E402
from search import search_bp  # noqa: E402
from settings import settings_bp  # noqa: E402
from signup import signup_bp  # noqa: E402
from tickets import tickets_bp  # noqa: E402
from wallet import wallet_bp  # noqa: E402
from wishlist import wishlist_bp  # noqa: E402

# === Config ===
SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")
SESSION_DAYS = int(os.getenv("SESSION_DAYS", "30"))
SESSION_COOKIE_NAME = "plugng_session"
SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SAMESITE = "Lax"
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"
SESSION_REFRESH_EACH_REQUEST = True
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "50"))

BLUEPRINTS = (
    login_bp, signup_bp, login_logs_bp, customer_profile_bp,
    catalog_bp, categories_bp, search_bp, media_bp,
    cart_api_bp, coupons_bp, checkout_bp, orders_bp, order_tracking_bp,
    wallet_bp, wishlist_bp, reviews_bp, tickets_bp, notifications_bp, newsletter_bp,
    admin_dashboard_bp, admin_sidebar_bp, admin_orders_bp, admin_products_bp,
    admin_customers_bp, admin_users_bp, admin_coupons_bp, admin_reviews_bp,
    admin_wallet_bp, admin_tickets_bp, activity_bp, settings_bp,
)


def create_app(config: dict | None = None):
    app = Flask(__name__)

    # --- Session / cookies ---
    app.secret_key = SECRET_KEY
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=SESSION_DAYS)
    app.config["SESSION_COOKIE_NAME"] = SESSION_COOKIE_NAME
    app.config["SESSION_COOKIE_HTTPONLY"] = SESSION_COOKIE_HTTPONLY
    app.config["SESSION_COOKIE_SAMESITE"] = SESSION_COOKIE_SAMESITE
    app.config["SESSION_COOKIE_SECURE"] = SESSION_COOKIE_SECURE
    app.config["SESSION_REFRESH_EACH_REQUEST"] = SESSION_REFRESH_EACH_REQUEST

    # --- File uploads ---
    app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_MB * 1024 * 1024
    app.config["JSON_SORT_KEYS"] = False
    if config:
        app.config.update(config)

    # --- Blueprints ---
    for bp in BLUEPRINTS:
        app.register_blueprint(bp)

    # --- JSON errors ---
    @app.errorhandler(404)
    def _not_found(e):
        return fail("Not found", 404)

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return fail("Method not allowed", 405)

    @app.errorhandler(413)
    def _too_large(e):
        return fail(f"Upload exceeds {MAX_UPLOAD_MB}MB", 413)

    @app.errorhandler(Exception)
    def _unhandled(e):
        if isinstance(e, HTTPException):
            return fail(e.description or e.name, e.code or 500)
        jlog("unhandled_error", path=request.path, method=request.method, error=traceback.format_exc())
        return fail("Internal server error", 500)

    # --- Utility routes ---
    @app.route("/health")
    def health():
        return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}, 200

    @app.route("/")
    def index():
        return "PlugNG API is running", 200

    try:
        ensure_indexes()
    except Exception:
        jlog("ensure_indexes_failed", error=traceback.format_exc())

    start_scheduler()
    return app


# Gunicorn entrypoint: `gunicorn app:app`
app = create_app()

if __name__ == "__main__":
    app.run(debug=True)
