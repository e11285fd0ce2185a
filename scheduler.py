# scheduler.py: background housekeeping (ticket auto-close, stale payment expiry)
from __future__ import annotations

import os
import traceback
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from checkout import expire_stale_payments
from common import _truthy, jlog
from tickets import auto_close_resolved

ENABLE_SCHEDULER = _truthy(os.getenv("ENABLE_SCHEDULER", "false"))
TICKET_JOB_MINUTES = 1
PAYMENT_JOB_MINUTES = 15

_scheduler: Optional[BackgroundScheduler] = None


def _ticket_close_job():
    try:
        closed = auto_close_resolved()
        if closed:
            jlog("tickets_auto_closed", count=closed)
    except Exception:
        jlog("tickets_auto_close_error", error=traceback.format_exc())


def _payment_expiry_job():
    try:
        expired = expire_stale_payments()
        if expired:
            jlog("payments_expired", count=expired)
    except Exception:
        jlog("payments_expire_error", error=traceback.format_exc())


def start_scheduler() -> Optional[BackgroundScheduler]:
    """Start the jobs once per process. Returns the running scheduler, or None when disabled."""
    global _scheduler
    if not ENABLE_SCHEDULER:
        return None
    if _scheduler is not None:
        return _scheduler

    sched = BackgroundScheduler(timezone="UTC")
    sched.add_job(
        _ticket_close_job,
        "interval",
        minutes=TICKET_JOB_MINUTES,
        max_instances=1,
        coalesce=True,
        id="tickets_auto_close",
    )
    sched.add_job(
        _payment_expiry_job,
        "interval",
        minutes=PAYMENT_JOB_MINUTES,
        max_instances=1,
        coalesce=True,
        id="payments_expire_stale",
    )
    try:
        sched.start()
        jlog("scheduler_started", ticket_minutes=TICKET_JOB_MINUTES, payment_minutes=PAYMENT_JOB_MINUTES)
    except Exception:
        jlog("scheduler_start_failed", error=traceback.format_exc())
        return None
    _scheduler = sched
    return sched
