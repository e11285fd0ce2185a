# login_logs.py
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from flask import Blueprint, request

from common import admin_required, ok, page_meta, paginate_args, parse_date
from db import db

login_logs_bp = Blueprint("login_logs", __name__)
login_logs_col = db["login_logs"]


def _build_date_filter(start_date: Optional[str], end_date: Optional[str]) -> Dict[str, Any]:
    """
    Mongo filter on created_at using inclusive start (>=) and exclusive end (< next day).
    """
    filt: Dict[str, Any] = {}
    start_dt = parse_date(start_date) if start_date else None
    end_dt = parse_date(end_date) if end_date else None

    # If both provided and out of order, swap
    if start_dt and end_dt and start_dt > end_dt:
        start_dt, end_dt = end_dt, start_dt

    rng = {}
    if start_dt:
        rng["$gte"] = start_dt
    if end_dt:
        rng["$lt"] = datetime(end_dt.year, end_dt.month, end_dt.day) + timedelta(days=1)
    if rng:
        filt["created_at"] = rng
    return filt


@login_logs_bp.route("/api/v1/admin/login-logs", methods=["GET"])
@admin_required
def view_login_logs():
    start_date = (request.args.get("start_date") or request.args.get("startDate") or "").strip() or None
    end_date = (request.args.get("end_date") or request.args.get("endDate") or "").strip() or None
    page, limit, skip = paginate_args(default_limit=20)

    filt = _build_date_filter(start_date, end_date)
    success = (request.args.get("success") or "").strip().lower()
    if success in ("true", "false"):
        filt["success"] = success == "true"

    total_count = login_logs_col.count_documents(filt)
    logs = list(
        login_logs_col.find(filt)
        .sort("created_at", -1)
        .skip(skip)
        .limit(limit)
    )
    return ok(logs, meta=page_meta(total_count, page, limit))
