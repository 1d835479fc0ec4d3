"""
KryptoGO payment integration for the College Planner.
Handles crypto payment intent creation, transaction verification, and
webhook validation.

Card checkout (Lemon Squeezy) remains the default; crypto is an explicit
opt-in from the payment modal.
"""
import os
import hmac
import hashlib

import requests

DEFAULT_API_BASE = "https://api.kryptogo.com"
KRYPTOGO_PAY_BASE = "https://pay.kryptogo.com"
SUPPORTED_CURRENCIES = ("TWD", "USD")

# Terminal statuses reported by the KryptoGO payment modal and webhooks
STATUS_SUCCESS = "success"
FAILED_STATUSES = ("expired", "insufficient_not_refunded", "insufficient_refunded")


def _api_base():
    return os.getenv("KRYPTOGO_API_BASE", DEFAULT_API_BASE).rstrip("/")


def _credentials():
    return os.getenv("KRYPTOGO_CLIENT_ID"), os.getenv("KRYPTOGO_API_SECRET")


def create_payment_intent(payment_id, report_id, amount, currency):
    """
    Create a KryptoGO payment intent.

    Without an API secret the hosted pay page URL is built locally so the
    client SDK modal can still be opened with our payment id.

    Args:
        payment_id: our internal payment record id
        report_id: report being purchased
        amount: fiat amount as a string
        currency: TWD or USD

    Returns:
        dict with payment_url, or error
    """
    client_id, secret = _credentials()
    if not client_id:
        return {"error": "Crypto payments are not configured."}

    if not secret:
        return {"payment_url": f"{KRYPTOGO_PAY_BASE}/{client_id}/{payment_id}"}

    try:
        response = requests.post(
            f"{_api_base()}/payment/intent",
            json={
                "client_id": client_id,
                "client_secret": secret,
                "fiat_amount": amount,
                "fiat_currency": currency,
                "order_data": {
                    "payment_id": payment_id,
                    "report_id": report_id,
                },
            },
            timeout=15,
        )
        result = response.json()
    except (requests.RequestException, ValueError) as e:
        print(f"KryptoGO init error: {e}")
        return {"error": "Could not create payment session. Please try again."}

    data = result.get("data") or {}
    payment_url = data.get("payment_url") or data.get("paymentUrl")
    if response.status_code not in (200, 201) or not payment_url:
        print(f"KryptoGO init error: {response.status_code} - {result.get('message')}")
        return {"error": "Could not create payment session. Please try again."}

    return {"payment_url": payment_url}


def verify_payment(payment_id, tx_hash):
    """
    Confirm an on-chain payment with KryptoGO.

    Args:
        payment_id: our internal payment record id
        tx_hash: transaction hash reported by the payment modal

    Returns:
        dict with verified=True/False and the provider status
    """
    client_id, secret = _credentials()
    if not client_id or not secret:
        return {"verified": False, "reason": "Crypto payments are not configured."}

    try:
        response = requests.post(
            f"{_api_base()}/payment/verify",
            json={
                "client_id": client_id,
                "client_secret": secret,
                "payment_intent_id": payment_id,
                "tx_hash": tx_hash,
            },
            timeout=15,
        )
        result = response.json()
    except (requests.RequestException, ValueError) as e:
        print(f"KryptoGO verify error: {e}")
        return {"verified": False, "reason": "Could not verify payment."}

    data = result.get("data") or result
    status = data.get("status")
    if status != STATUS_SUCCESS:
        return {"verified": False, "reason": "Payment not completed.", "status": status}

    return {
        "verified": True,
        "status": status,
        "amount": data.get("amount"),
        "currency": data.get("currency"),
    }


def verify_webhook_signature(payload_bytes, signature):
    """
    Validate a KryptoGO webhook with HMAC SHA256 over the raw body.

    When no KRYPTOGO_WEBHOOK_SECRET is configured every webhook is accepted.
    """
    secret = os.getenv("KRYPTOGO_WEBHOOK_SECRET")
    if not secret:
        print("WARNING: KRYPTOGO_WEBHOOK_SECRET not set. Accepting unsigned webhook.")
        return True
    if not signature:
        return False

    computed = hmac.new(
        secret.encode("utf-8"),
        payload_bytes,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(computed, signature)
