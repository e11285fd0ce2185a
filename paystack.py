# paystack.py: thin Paystack client (initialize / verify) with a local dev mode
import os
from typing import Any, Dict, Optional

import requests

from common import jlog

PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY", "")
PAYSTACK_TIMEOUT = 20
PLACEHOLDER_KEY = "sk_test_placeholder"


class PaystackError(Exception):
    pass


def is_dev_mode() -> bool:
    """No real key configured: payments are confirmed locally."""
    return not PAYSTACK_SECRET_KEY or PAYSTACK_SECRET_KEY == PLACEHOLDER_KEY


def _headers() -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {PAYSTACK_SECRET_KEY}",
        "Content-Type": "application/json",
    }


def to_kobo(amount) -> int:
    return int(round(float(amount) * 100))


def initialize_transaction(email: str, amount: float, reference: str,
                           callback_url: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Returns Paystack's data block (authorization_url, access_code, reference)."""
    payload = {
        "email": email,
        "amount": to_kobo(amount),
        "reference": reference,
        "callback_url": callback_url,
        "metadata": metadata or {},
    }
    try:
        r = requests.post(f"{PAYSTACK_BASE_URL}/transaction/initialize",
                          json=payload, headers=_headers(), timeout=PAYSTACK_TIMEOUT)
        result = r.json()
    except (requests.RequestException, ValueError) as e:
        jlog("paystack_initialize_error", reference=reference, error=str(e))
        raise PaystackError("Payment gateway unavailable") from e

    if not result.get("status") or not result.get("data"):
        jlog("paystack_initialize_rejected", reference=reference, message=result.get("message"))
        raise PaystackError(result.get("message") or "Payment initialization failed")
    return result["data"]


def verify_transaction(reference: str) -> Dict[str, Any]:
    """
    Returns the transaction data when Paystack reports status == success,
    raises PaystackError otherwise.
    """
    try:
        r = requests.get(f"{PAYSTACK_BASE_URL}/transaction/verify/{reference}",
                         headers=_headers(), timeout=PAYSTACK_TIMEOUT)
        result = r.json()
    except (requests.RequestException, ValueError) as e:
        jlog("paystack_verify_error", reference=reference, error=str(e))
        raise PaystackError("Could not verify payment") from e

    data = result.get("data") or {}
    jlog("paystack_verify", reference=reference, status=data.get("status"), gateway=data.get("gateway_response"))
    if not result.get("status") or data.get("status") != "success":
        raise PaystackError(result.get("message") or data.get("gateway_response") or "Payment verification failed")
    return data
