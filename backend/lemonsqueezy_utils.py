"""
College Planner -- Lemon Squeezy Checkout Utilities
Card checkout creation and order verification for the full report unlock.
Talks to the Lemon Squeezy JSON:API directly with requests.
"""

import os

import requests

LEMON_SQUEEZY_API_BASE = "https://api.lemonsqueezy.com/v1"
_JSON_API = "application/vnd.api+json"


def _headers(api_key):
    return {
        "Accept": _JSON_API,
        "Content-Type": _JSON_API,
        "Authorization": f"Bearer {api_key}",
    }


def create_checkout(report_id, email=None, name=None, custom_data=None):
    """
    Create a hosted checkout for one report.

    Args:
        report_id: report being purchased, echoed back in custom data
        email: optional prefill for the checkout form
        name: optional prefill for the checkout form
        custom_data: extra key/values passed through to the order

    Returns:
        dict with checkout_url, or error
    """
    api_key = os.getenv("LEMON_SQUEEZY_API_KEY")
    if not api_key:
        return {"error": "Card payments are not configured."}

    try:
        store_id = int(os.getenv("LEMON_SQUEEZY_STORE_ID", ""))
        variant_id = int(os.getenv("LEMON_SQUEEZY_VARIANT_ID", ""))
    except ValueError:
        print("Lemon Squeezy config error: invalid store or variant ID")
        return {"error": "Card payments are not configured."}

    custom = dict(custom_data or {})
    custom["report_id"] = report_id

    checkout_data = {"custom": custom}
    if email:
        checkout_data["email"] = email
    if name:
        checkout_data["name"] = name

    body = {
        "data": {
            "type": "checkouts",
            "attributes": {"checkout_data": checkout_data},
            "relationships": {
                "store": {"data": {"type": "stores", "id": str(store_id)}},
                "variant": {"data": {"type": "variants", "id": str(variant_id)}},
            },
        }
    }

    try:
        response = requests.post(
            f"{LEMON_SQUEEZY_API_BASE}/checkouts",
            json=body,
            headers=_headers(api_key),
            timeout=15,
        )
        result = response.json()
    except (requests.RequestException, ValueError) as e:
        print(f"Lemon Squeezy checkout error: {e}")
        return {"error": "Could not create checkout. Please try again."}

    url = ((result.get("data") or {}).get("attributes") or {}).get("url")
    if response.status_code not in (200, 201) or not url:
        print(f"Lemon Squeezy checkout error: {response.status_code} - {result.get('errors')}")
        return {"error": "Could not create checkout. Please try again."}

    return {"checkout_url": url}


def verify_order(order_id):
    """
    Confirm that a Lemon Squeezy order exists and is paid.

    Args:
        order_id: order id reported by the checkout success event

    Returns:
        dict with verified=True/False, plus reason on failure
    """
    api_key = os.getenv("LEMON_SQUEEZY_API_KEY")
    if not api_key:
        return {"verified": False, "reason": "Card payments are not configured."}

    # Order ids are numeric; anything else must never reach the URL path
    order_id = str(order_id).strip()
    if not (order_id.isascii() and order_id.isdigit()):
        return {"verified": False, "reason": "Order not found."}

    try:
        response = requests.get(
            f"{LEMON_SQUEEZY_API_BASE}/orders/{order_id}",
            headers=_headers(api_key),
            timeout=15,
        )
    except requests.RequestException as e:
        print(f"Lemon Squeezy verify error: {e}")
        return {"verified": False, "reason": "Could not verify payment."}

    if response.status_code == 404:
        return {"verified": False, "reason": "Order not found."}
    if response.status_code != 200:
        print(f"Lemon Squeezy verify error: HTTP {response.status_code}")
        return {"verified": False, "reason": "Could not verify payment."}

    try:
        attributes = response.json()["data"]["attributes"]
    except (ValueError, KeyError, TypeError):
        return {"verified": False, "reason": "Could not verify payment."}

    if attributes.get("status") != "paid":
        return {"verified": False, "reason": "Payment not completed."}

    expected_variant = os.getenv("LEMON_SQUEEZY_VARIANT_ID", "").strip()
    variant_id = str((attributes.get("first_order_item") or {}).get("variant_id", ""))
    if expected_variant and variant_id != expected_variant:
        print(f"Lemon Squeezy order {order_id} is for variant {variant_id}, expected {expected_variant}")
        return {"verified": False, "reason": "Order is not for this product."}

    return {
        "verified": True,
        "order_id": str(order_id),
        "user_email": attributes.get("user_email", ""),
    }
