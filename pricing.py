# pricing.py: delivery fee, discounts and order totals (no request/DB writes)
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from common import _r2
from settings import get_number_setting

TIER1_STATES = {"lagos", "fct", "abuja"}
TIER2_STATES = {"rivers", "oyo", "edo", "enugu", "kano"}

DEFAULT_TIER1_FEE = 1200.0
DEFAULT_TIER2_FEE = 1500.0
DEFAULT_OTHER_FEE = 2000.0
DEFAULT_FREE_DELIVERY_THRESHOLD = 5000.0
DEFAULT_BANK_TRANSFER_DISCOUNT = 200.0
DEFAULT_MAX_DISCOUNT_RATIO = 0.5


def pricing_config() -> Dict[str, float]:
    return {
        "tier1_fee": get_number_setting("delivery", "tier1_fee", DEFAULT_TIER1_FEE),
        "tier2_fee": get_number_setting("delivery", "tier2_fee", DEFAULT_TIER2_FEE),
        "other_fee": get_number_setting("delivery", "default_fee", DEFAULT_OTHER_FEE),
        "free_threshold": get_number_setting("delivery", "free_threshold", DEFAULT_FREE_DELIVERY_THRESHOLD),
        "bank_transfer_discount": get_number_setting(
            "payment", "bank_transfer_discount", DEFAULT_BANK_TRANSFER_DISCOUNT),
        "max_discount_ratio": get_number_setting("payment", "max_discount_ratio", DEFAULT_MAX_DISCOUNT_RATIO),
    }


def _defaults() -> Dict[str, float]:
    return {
        "tier1_fee": DEFAULT_TIER1_FEE,
        "tier2_fee": DEFAULT_TIER2_FEE,
        "other_fee": DEFAULT_OTHER_FEE,
        "free_threshold": DEFAULT_FREE_DELIVERY_THRESHOLD,
        "bank_transfer_discount": DEFAULT_BANK_TRANSFER_DISCOUNT,
        "max_discount_ratio": DEFAULT_MAX_DISCOUNT_RATIO,
    }


def delivery_fee(state: str, subtotal: float, cfg: Optional[Dict[str, float]] = None) -> float:
    cfg = cfg or _defaults()
    if subtotal >= cfg["free_threshold"]:
        return 0.0
    s = (state or "").strip().lower()
    if s in TIER1_STATES:
        return cfg["tier1_fee"]
    if s in TIER2_STATES:
        return cfg["tier2_fee"]
    return cfg["other_fee"]


def wallet_only_discount(lines: Iterable[Dict[str, Any]], now: Optional[datetime] = None) -> float:
    """
    Sum of per-product wallet-only discounts.
    Each line carries price, quantity and the product document.
    """
    now = now or datetime.utcnow()
    total = 0.0
    for line in lines:
        wod = (line.get("product") or {}).get("wallet_only_discount") or {}
        if not wod.get("enabled"):
            continue
        valid_until = wod.get("valid_until")
        if valid_until and valid_until <= now:
            continue
        pct = float(wod.get("percentage") or 0)
        total += float(line["price"]) * int(line["quantity"]) * pct / 100.0
    return _r2(total)


def coupon_amount(coupon: Dict[str, Any], subtotal: float) -> float:
    if coupon.get("type") == "percentage":
        amount = subtotal * float(coupon.get("value") or 0) / 100.0
        cap = float(coupon.get("max_discount_amount") or 0)
        if cap > 0:
            amount = min(amount, cap)
    else:
        amount = float(coupon.get("value") or 0)
    return _r2(max(0.0, min(amount, subtotal)))


def compute_totals(lines, state: str, payment_method: str,
                   coupon: Optional[Dict[str, Any]] = None,
                   cfg: Optional[Dict[str, float]] = None,
                   now: Optional[datetime] = None) -> Dict[str, float]:
    """
    Order money breakdown. The combined discount never exceeds
    max_discount_ratio of the subtotal; the coupon share absorbs the excess.
    """
    cfg = cfg or _defaults()
    subtotal = _r2(sum(float(l["price"]) * int(l["quantity"]) for l in lines))
    fee = delivery_fee(state, subtotal, cfg)

    method_discount = 0.0
    if payment_method == "wallet":
        method_discount = wallet_only_discount(lines, now)
    elif payment_method == "bank_transfer":
        method_discount = cfg["bank_transfer_discount"]

    coupon_discount = coupon_amount(coupon, subtotal) if coupon else 0.0

    max_discount = _r2(subtotal * cfg["max_discount_ratio"])
    discount = _r2(method_discount + coupon_discount)
    if discount > max_discount:
        excess = _r2(discount - max_discount)
        coupon_discount = _r2(max(0.0, coupon_discount - excess))
        discount = max_discount

    return {
        "subtotal": subtotal,
        "delivery_fee": _r2(fee),
        "discount": _r2(discount),
        "coupon_discount": coupon_discount,
        "total": _r2(subtotal + fee - discount),
    }


def loyalty_tier(total_spent: float) -> str:
    if total_spent >= 1_000_000:
        return "Master"
    if total_spent >= 250_000:
        return "Elite"
    return "Enthusiast"
