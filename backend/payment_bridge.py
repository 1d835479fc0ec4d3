"""
College Planner -- Payment Event Bridge
Client-side glue between the two checkout SDKs and our verification API.

Both SDKs report success in their own way. The bridge reduces either one to
"order O paid for report R", trades that for an entitlement token at the
backend, and stores the token. It stores nothing else.
"""

import time

import requests

from backend.errors import PaymentVerificationFailed
from backend.kryptogo_utils import FAILED_STATUSES, STATUS_SUCCESS

# Client-side storage keys
CURRENT_REPORT_ID_KEY = 'current_report_id'
AUTH_TOKEN_KEY = 'auth_token'
APPLIED_COUPON_KEY = 'applied_coupon_price'

FALLBACK_ORDER_PREFIX = 'lsqy_order_'


class ClientState:
    """Opaque key-value storage the browser app keeps between page loads."""

    def __init__(self, storage=None):
        self._storage = storage if storage is not None else {}

    @property
    def current_report_id(self):
        return self._storage.get(CURRENT_REPORT_ID_KEY)

    @current_report_id.setter
    def current_report_id(self, value):
        self._storage[CURRENT_REPORT_ID_KEY] = value

    @property
    def auth_token(self):
        return self._storage.get(AUTH_TOKEN_KEY)

    @auth_token.setter
    def auth_token(self, value):
        self._storage[AUTH_TOKEN_KEY] = value

    @property
    def applied_coupon(self):
        return self._storage.get(APPLIED_COUPON_KEY)

    @applied_coupon.setter
    def applied_coupon(self, value):
        self._storage[APPLIED_COUPON_KEY] = value

    def clear_payment(self):
        self._storage.pop(AUTH_TOKEN_KEY, None)
        self._storage.pop(APPLIED_COUPON_KEY, None)


# ============================================================
# CARD CHECKOUT: ORDER ID EXTRACTION
# ============================================================
# The Lemon Squeezy success event does not have a fixed shape. Each strategy
# looks in one known place; the first non-empty hit wins.

def _dig(payload, *path):
    node = payload
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    if node is None or node == '':
        return None
    return str(node)


def _direct_id(payload):
    return _dig(payload, 'id')


def _order_id(payload):
    return _dig(payload, 'order_id')


def _attributes_order_id(payload):
    return _dig(payload, 'attributes', 'order_id')


def _data_attributes_order_id(payload):
    return _dig(payload, 'data', 'attributes', 'order_id')


def _custom_data_order_id(payload):
    return _dig(payload, 'custom_data', 'order_id')


ORDER_ID_STRATEGIES = [
    _direct_id,
    _order_id,
    _attributes_order_id,
    _data_attributes_order_id,
    _custom_data_order_id,
]


def fallback_order_id(now=None):
    now = time.time() if now is None else now
    return f"{FALLBACK_ORDER_PREFIX}{int(now * 1000)}"


def extract_order_id(payload, strategies=None):
    """
    Find the order id in a card checkout success payload.
    Never fails: synthesizes a placeholder id when every strategy misses.
    """
    for strategy in strategies or ORDER_ID_STRATEGIES:
        found = strategy(payload)
        if found:
            return found
    order_id = fallback_order_id()
    print(f"Could not extract order_id from checkout data, using {order_id}")
    return order_id


# ============================================================
# CRYPTO CHECKOUT: STATUS STATE MACHINE
# ============================================================

IDLE = 'idle'
MODAL_OPEN = 'modal_open'
PENDING = 'pending'


class CryptoCheckout:
    """
    Tracks one KryptoGO payment modal.

    idle -> modal_open -> pending -> success | expired |
    insufficient_not_refunded | insufficient_refunded

    Only success with a transaction hash reaches the bridge. The failure
    states drop back to idle with last_error set; nothing retries.
    """

    def __init__(self, bridge):
        self.bridge = bridge
        self.state = IDLE
        self.payment_id = None
        self.tx_hash = None
        self.last_error = None

    def open(self, payment_id):
        if self.state not in (IDLE, MODAL_OPEN):
            raise RuntimeError(f"Cannot open payment modal while {self.state}")
        self.state = MODAL_OPEN
        self.payment_id = payment_id
        self.tx_hash = None
        self.last_error = None

    def close(self):
        if self.state == MODAL_OPEN:
            self.state = IDLE

    def on_status(self, status, tx_hash=None):
        """
        Feed one status update from the SDK.

        Returns:
            the entitlement token when this update completed the exchange,
            otherwise None
        """
        status = (status or '').lower()

        if status == 'pending':
            if self.state in (MODAL_OPEN, PENDING):
                self.state = PENDING
            return None

        if status in FAILED_STATUSES:
            self.state = IDLE
            self.last_error = status
            print(f"Crypto payment {self.payment_id} ended: {status}")
            return None

        if status == STATUS_SUCCESS:
            if self.state not in (MODAL_OPEN, PENDING):
                # Closed, failed, or already exchanged
                print(f"Ignoring crypto success for {self.payment_id} while {self.state}")
                return None
            if not tx_hash:
                # Wait for the update that carries the hash
                self.state = PENDING
                return None
            self.state = STATUS_SUCCESS
            self.tx_hash = tx_hash
            try:
                return self.bridge.exchange_crypto(self.payment_id, tx_hash)
            except PaymentVerificationFailed as e:
                self.state = IDLE
                self.last_error = e.message
                raise

        return None


# ============================================================
# BRIDGE
# ============================================================

class PaymentBridge:
    """
    Args:
        api_base_url: backend root, e.g. http://localhost:5001/api
        state: ClientState holding the report id and token
        session: requests-compatible session, injectable for tests
    """

    def __init__(self, api_base_url, state=None, session=None, timeout=15):
        self.api_base_url = api_base_url.rstrip('/')
        self.state = state or ClientState()
        self.session = session or requests.Session()
        self.timeout = timeout

    def _post(self, path, body, headers=None):
        try:
            response = self.session.post(
                f"{self.api_base_url}{path}",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            print(f"Verification request error: {e}")
            raise PaymentVerificationFailed("Could not reach the payment server. Please try again.")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400:
            message = data.get('message') or "We could not confirm your payment. Please try again."
            raise PaymentVerificationFailed(message, status_code=response.status_code)
        return data

    def _store_token(self, data):
        token = data.get('token')
        if not token:
            raise PaymentVerificationFailed("No token received from verification endpoint.")
        self.state.auth_token = token
        return token

    def card_checkout_succeeded(self, payload, report_id=None):
        """Handle the Lemon Squeezy success event. Returns the stored token."""
        report_id = report_id or self.state.current_report_id
        if not report_id:
            raise PaymentVerificationFailed("No report selected for this payment.", status_code=400)

        order_id = extract_order_id(payload or {})
        data = self._post('/lemon-squeezy/verify', {
            'order_id': order_id,
            'reportId': report_id,
        })
        return self._store_token(data)

    def start_crypto_payment(self, amount, currency, report_id=None):
        """
        Register a payment with the backend and open the modal state.

        Returns:
            (CryptoCheckout, payment_url)
        """
        report_id = report_id or self.state.current_report_id
        if not report_id:
            raise PaymentVerificationFailed("No report selected for this payment.", status_code=400)

        data = self._post('/payment/initialize', {
            'amount': amount,
            'currency': currency,
            'reportId': report_id,
        })
        info = data.get('data') or {}
        checkout = CryptoCheckout(self)
        checkout.open(info.get('paymentId'))
        return checkout, info.get('paymentUrl')

    def exchange_crypto(self, payment_id, tx_hash):
        data = self._post('/payment/verify', {
            'paymentId': payment_id,
            'txHash': tx_hash,
        })
        return self._store_token(data)

    def redeem_beta_code(self, beta_code, report_id=None):
        report_id = report_id or self.state.current_report_id
        data = self._post('/auth/verify-beta', {
            'betaCode': beta_code,
            'reportId': report_id,
        })
        return self._store_token(data)

    def apply_coupon(self, coupon_code):
        data = self._post('/auth/verify-coupon', {'couponCode': coupon_code})
        self.state.applied_coupon = data.get('discountAmount')
        return self.state.applied_coupon
