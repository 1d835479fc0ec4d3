"""
College Planner -- Entitlement Tokens
Signed, expiring JWTs asserting that one report's full content is unlocked.
"""

import os
import secrets
from datetime import datetime, timedelta, timezone

import jwt

from backend.errors import InvalidClaim

JWT_ALGORITHM = "HS256"
TOKEN_LIFETIME_HOURS = 24
SOURCES = ("card", "crypto", "beta_code")

_fallback_secret = None


def _secret():
    global _fallback_secret
    secret = os.getenv("JWT_SECRET")
    if secret:
        return secret
    if _fallback_secret is None:
        print("WARNING: JWT_SECRET not set. Tokens will not survive a restart.")
        _fallback_secret = secrets.token_hex(32)
    return _fallback_secret


def issue_token(report_id, source, order_id=None, now=None):
    """
    Sign a claim for report_id.

    Args:
        report_id: the report being unlocked (None for a bare beta code)
        source: one of SOURCES
        order_id: provider order/payment reference, when there is one
        now: issue time override, used by tests

    Returns:
        str: the encoded token
    """
    if source not in SOURCES:
        raise ValueError(f"Unknown entitlement source: {source}")

    now = now or datetime.now(timezone.utc)
    payload = {
        "reportId": report_id,
        "isPaid": True,
        "source": source,
        "issuedAt": now.isoformat(),
        "iat": now,
        "exp": now + timedelta(hours=TOKEN_LIFETIME_HOURS),
    }
    if order_id:
        payload["orderId"] = order_id
    return jwt.encode(payload, _secret(), algorithm=JWT_ALGORITHM)


def verify_token(token):
    try:
        claim = jwt.decode(token, _secret(), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise InvalidClaim("Token expired.", status_code=401)
    except jwt.InvalidTokenError:
        raise InvalidClaim("Invalid token.")

    if claim.get("isPaid") is not True or claim.get("source") not in SOURCES:
        raise InvalidClaim("Invalid token.")
    return claim


def bearer_token(auth_header):
    """Pull the token out of an Authorization header, or None."""
    if not auth_header or not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def optional_claim(auth_header):
    """Claim from the header, or None. Never raises."""
    token = bearer_token(auth_header)
    if not token:
        return None
    try:
        return verify_token(token)
    except InvalidClaim as e:
        print(f"Ignoring bearer token: {e.message}")
        return None


def is_entitled(claim, report_id):
    return bool(claim) and claim.get("reportId") is not None and claim.get("reportId") == report_id


def require_entitlement(auth_header, report_id):
    """Strict check for the PDF download path."""
    token = bearer_token(auth_header)
    if not token:
        raise InvalidClaim("Access denied. No token provided.", status_code=401)
    claim = verify_token(token)
    if not is_entitled(claim, report_id):
        raise InvalidClaim("Access denied. Token is not valid for this report.")
    return claim
