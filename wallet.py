# wallet.py: customer wallet: balance ledger helpers, Paystack top-ups, history
from __future__ import annotations

import os
import time
from datetime import datetime
from typing import Any, Dict, Optional

from flask import Blueprint, request
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import paystack
from common import (
    _r2, _to_float, body_json, current_user, fail, jlog, login_required, ok, oid,
    page_meta, paginate_args,
)
from db import db
from notifications import send_in_app

wallet_bp = Blueprint("wallet", __name__)

balances_col = db["balances"]
transactions_col = db["transactions"]
topups_col = db["wallet_topups"]

MIN_TOPUP = 100.0
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")


# ===== Ledger helpers =========================================================
def get_balance(user_id) -> float:
    doc = balances_col.find_one({"user_id": oid(user_id)})
    return _r2((doc or {}).get("amount", 0.0))


def _ledger(user_id, tx_type: str, amount: float, description: str, reference: Optional[str],
            category: str, gateway: str, meta: Optional[Dict[str, Any]] = None):
    now = datetime.utcnow()
    transactions_col.insert_one({
        "user_id": oid(user_id),
        "type": tx_type,
        "category": category,
        "amount": _r2(amount),
        "description": description,
        "reference": reference,
        "status": "success",
        "gateway": gateway,
        "currency": "NGN",
        "meta": meta or {},
        "created_at": now,
        "verified_at": now,
    })


def credit_wallet(user_id, amount: float, description: str, reference: Optional[str] = None,
                  category: str = "topup", gateway: str = "Paystack",
                  meta: Optional[Dict[str, Any]] = None) -> float:
    amount = _r2(amount)
    doc = balances_col.find_one_and_update(
        {"user_id": oid(user_id)},
        {"$inc": {"amount": amount}, "$set": {"updated_at": datetime.utcnow()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    _ledger(user_id, "credit", amount, description, reference, category, gateway, meta)
    return _r2(doc.get("amount"))


def debit_wallet(user_id, amount: float, description: str, reference: Optional[str] = None,
                 category: str = "purchase", gateway: str = "Wallet",
                 meta: Optional[Dict[str, Any]] = None) -> Optional[float]:
    """
    Atomic debit guarded by the balance. Returns the new balance,
    or None when the balance does not cover the amount.
    """
    amount = _r2(amount)
    doc = balances_col.find_one_and_update(
        {"user_id": oid(user_id), "amount": {"$gte": amount}},
        {"$inc": {"amount": -amount}, "$set": {"updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        return None
    _ledger(user_id, "debit", amount, description, reference, category, gateway, meta)
    return _r2(doc.get("amount"))


def reference_credited(reference: str) -> bool:
    return bool(transactions_col.find_one({"reference": reference, "type": "credit", "status": "success"}))


def claim_topup_reference(reference: str, user_id) -> bool:
    """
    Record a top-up reference as consumed. The reference is the _id, so only
    one of two concurrent verifies can claim it.
    """
    try:
        topups_col.insert_one({"_id": reference, "user_id": oid(user_id), "created_at": datetime.utcnow()})
    except DuplicateKeyError:
        return False
    return True


def _amount_token(amount: float) -> str:
    return str(int(amount)) if float(amount).is_integer() else f"{amount:.2f}"


def _amount_from_reference(reference: str) -> Optional[float]:
    # WLT-<ms>-<amount>-<uid4>
    parts = reference.split("-")
    if len(parts) != 4 or parts[0] != "WLT":
        return None
    return _to_float(parts[2])


def _credit_topup(user: dict, amount: float, reference: str, meta: Dict[str, Any]) -> float:
    balance = credit_wallet(
        user["_id"], amount, "Wallet Top-up", reference,
        category="topup", gateway="Paystack", meta=meta,
    )
    send_in_app(
        user["_id"], "wallet_update", "Wallet Funded",
        f"Your wallet has been credited with ₦{amount:,.2f}.", "/account/wallet",
        {"reference": reference, "amount": amount},
    )
    jlog("wallet_topup_credited", user_id=str(user["_id"]), amount=amount, reference=reference)
    return balance


# ===== Routes =================================================================
@wallet_bp.route("/api/v1/wallet/balance", methods=["GET"])
@login_required
def wallet_balance():
    return ok({"balance": get_balance(current_user()["_id"])})


@wallet_bp.route("/api/v1/wallet/initialize", methods=["POST"])
@login_required
def initialize_topup():
    user = current_user()
    amount = _to_float(body_json().get("amount"))
    if amount is None or amount < MIN_TOPUP:
        return fail(f"Minimum top-up amount is ₦{MIN_TOPUP:,.0f}")
    amount = _r2(amount)

    reference = f"WLT-{int(time.time() * 1000)}-{_amount_token(amount)}-{str(user['_id'])[-4:]}"

    if paystack.is_dev_mode():
        return ok({
            "reference": reference,
            "authorizationUrl": f"{FRONTEND_URL}/account/wallet?reference={reference}&dev=1",
            "devMode": True,
        })

    try:
        data = paystack.initialize_transaction(
            user["email"], amount, reference,
            f"{FRONTEND_URL}/account/wallet",
            metadata={"type": "wallet_topup", "userId": str(user["_id"]), "amount": amount},
        )
    except paystack.PaystackError as e:
        return fail(str(e), 502)

    return ok({
        "reference": reference,
        "authorizationUrl": data.get("authorization_url"),
        "accessCode": data.get("access_code"),
    })


@wallet_bp.route("/api/v1/wallet/verify", methods=["GET"])
@login_required
def verify_topup():
    user = current_user()
    reference = (request.args.get("reference") or "").strip()
    if not reference:
        return fail("Reference is required")

    if reference_credited(reference):
        return ok({"balance": get_balance(user["_id"])}, message="Already processed")
    if not reference.startswith("WLT-"):
        return fail("Invalid reference")

    if paystack.is_dev_mode():
        amount = _amount_from_reference(reference)
        if not amount or amount < MIN_TOPUP or not reference.endswith(str(user["_id"])[-4:]):
            return fail("Invalid reference")
        if not claim_topup_reference(reference, user["_id"]):
            return ok({"balance": get_balance(user["_id"])}, message="Already processed")
        balance = _credit_topup(user, _r2(amount), reference, {"dev_mode": True})
        return ok({"balance": balance, "amount": _r2(amount)}, message="Wallet funded")

    try:
        data = paystack.verify_transaction(reference)
    except paystack.PaystackError as e:
        return fail(str(e) or "Payment verification failed")

    metadata = data.get("metadata")
    if not isinstance(metadata, dict) or metadata.get("type") != "wallet_topup":
        return fail("Reference is not a wallet top-up")
    if metadata.get("userId") != str(user["_id"]):
        return fail("Reference does not belong to this account", 403)

    amount = _r2((data.get("amount") or 0) / 100.0)
    if amount <= 0:
        return fail("Invalid payment amount")
    if not claim_topup_reference(reference, user["_id"]):
        return ok({"balance": get_balance(user["_id"])}, message="Already processed")
    balance = _credit_topup(user, amount, reference, {"channel": data.get("channel"), "paystack_id": data.get("id")})
    return ok({"balance": balance, "amount": amount}, message="Wallet funded")


@wallet_bp.route("/api/v1/wallet/transactions", methods=["GET"])
@login_required
def wallet_transactions():
    user = current_user()
    page, limit, skip = paginate_args(default_limit=20)
    q = {"user_id": user["_id"]}
    total = transactions_col.count_documents(q)
    items = list(transactions_col.find(q, {"meta": 0}).sort("created_at", -1).skip(skip).limit(limit))
    return ok(items, meta=page_meta(total, page, limit), balance=get_balance(user["_id"]))
