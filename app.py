"""
College Planner -- Main Application
Generates a personalized college application plan from a student profile and
unlocks the full plan after a card or crypto payment.
"""

import os
import time
import uuid
import secrets
from datetime import datetime, timezone
from flask import Flask, request, jsonify, render_template, Response
from flask_cors import CORS
from flask_limiter import Limiter
from dotenv import load_dotenv

from backend.errors import PlannerError, PaymentVerificationFailed, InvalidClaim
from backend.plan_generator import generate_plan, ai_enabled
from backend.plan_pdf import generate_plan_pdf
from backend.redaction import redact, view_for
from backend.report_store import create_report_store
from backend.entitlement import (
    issue_token, verify_token, bearer_token, optional_claim, is_entitled, require_entitlement,
)
from backend.lemonsqueezy_utils import create_checkout, verify_order
from backend.kryptogo_utils import (
    SUPPORTED_CURRENCIES, create_payment_intent, verify_payment, verify_webhook_signature,
)

# Load environment variables (override=True ensures .env values take priority)
load_dotenv(override=True)

# Initialize Flask app
app = Flask(
    __name__,
    template_folder='templates',
)
app.secret_key = os.getenv('FLASK_SECRET_KEY', secrets.token_hex(32))
CORS(app)


# Rate limiting -- protect API credits and prevent abuse
# Use X-Forwarded-For header behind the proxy to get real client IP
def get_real_ip():
    """Get the real client IP, handling a reverse proxy."""
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr or '127.0.0.1'


def _is_whitelisted_ip():
    """Our own IPs skip the daily report quota."""
    whitelist = os.getenv('RATE_LIMIT_WHITELIST', '127.0.0.1,::1')
    return get_real_ip() in [ip.strip() for ip in whitelist.split(',') if ip.strip()]


limiter = Limiter(
    app=app,
    key_func=get_real_ip,
    default_limits=["2000 per day", "500 per hour"],
    storage_uri="memory://",
)

# Reports, payment records, and the order redemption ledger
store = create_report_store()

print(f"🤖 Plan generation: {'enabled' if ai_enabled() else 'disabled (no ANTHROPIC_API_KEY)'}")
print(f"💳 Lemon Squeezy: {'configured' if os.getenv('LEMON_SQUEEZY_API_KEY') else 'not configured'}")
print(f"🪙 KryptoGO: {'configured' if os.getenv('KRYPTOGO_CLIENT_ID') else 'not configured'}")


def _error_response(err):
    """Translate a taxonomy error into its JSON response."""
    return jsonify(err.to_dict()), err.status_code


def _bad_request(message):
    return jsonify({"success": False, "error": "BAD_REQUEST", "message": message}), 400


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def _new_report_id():
    return f"report_{uuid.uuid4().hex}"


def _new_payment_id():
    return f"payment_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


# ============================================================
# AUTH ROUTES
# ============================================================

@app.route('/api/auth/verify-beta', methods=['POST'])
@limiter.limit("20 per hour")
def verify_beta():
    """
    Exchange a beta code for an entitlement token, bypassing payment.

    Accepts:
        JSON body with betaCode and optional reportId.

    Returns:
        JSON with a signed token valid for 24 hours.
    """
    data = request.get_json(silent=True) or {}
    beta_code = str(data.get('betaCode') or '').strip()
    report_id = data.get('reportId') or None

    if not beta_code:
        return _bad_request("Beta code is required.")

    expected = os.getenv('BETA_CODE', '')
    if not expected or not secrets.compare_digest(beta_code, expected):
        return _bad_request("Invalid beta code.")

    token = issue_token(report_id, 'beta_code')
    return jsonify({
        "success": True,
        "message": "Beta code verified successfully.",
        "token": token,
    })


@app.route('/api/auth/validate-token', methods=['GET'])
def validate_token():
    """Check a bearer token and report what it grants."""
    token = bearer_token(request.headers.get('Authorization'))
    if not token:
        return _error_response(InvalidClaim("No token provided.", status_code=401))

    try:
        claim = verify_token(token)
    except InvalidClaim as e:
        return _error_response(e)

    return jsonify({
        "success": True,
        "message": "Token is valid.",
        "data": {
            "isPaid": claim.get('isPaid'),
            "source": claim.get('source'),
            "reportId": claim.get('reportId'),
        },
    })


@app.route('/api/auth/verify-coupon', methods=['POST'])
@limiter.limit("30 per hour")
def verify_coupon():
    """
    Check a discount code.

    Accepts:
        JSON body with couponCode.

    Returns:
        JSON with the discounted price to show at checkout.
    """
    data = request.get_json(silent=True) or {}
    coupon_code = str(data.get('couponCode') or '').strip()
    if not coupon_code:
        return _bad_request("Coupon code is required.")

    valid_codes = [c.strip() for c in os.getenv('COUPON_CODES', '').split(',') if c.strip()]
    if coupon_code not in valid_codes:
        return _bad_request("Invalid coupon code.")

    return jsonify({
        "success": True,
        "message": "Coupon code is valid.",
        "discountAmount": os.getenv('COUPON_DISCOUNT_AMOUNT', '0.01'),
    })


# ============================================================
# REPORT ROUTES
# ============================================================

@app.route('/api/report/generate', methods=['POST'])
@limiter.limit("10 per day", exempt_when=_is_whitelisted_ip)
def generate_report():
    """
    Main API endpoint: generate a college plan for a student profile.

    Accepts:
        JSON body with studentData (free-form profile).

    Returns:
        JSON with the new reportId and the limited view of the plan.
    """
    try:
        data = request.get_json(silent=True) or {}
        student_data = data.get('studentData')
        if not isinstance(student_data, dict) or not student_data:
            return _bad_request("Student data is required.")

        content = generate_plan(student_data)

        report = {
            "id": _new_report_id(),
            "studentProfile": student_data,
            "content": content,
            "createdAt": _now_iso(),
        }
        report_id = store.put(report)
        print(f"Report generated: {report_id}")

        # The full plan is only released through the entitlement check
        return jsonify({
            "success": True,
            "message": "Report generated successfully.",
            "reportId": report_id,
            "isPaid": False,
            "reportData": redact(content),
        })

    except PlannerError as e:
        print(f"Report generation error: {e.message}")
        return _error_response(e)
    except Exception as e:
        print(f"Report generation error: {str(e)}")
        return jsonify({"success": False, "error": "INTERNAL_ERROR",
                        "message": "Failed to generate report. Please try again."}), 500


def _report_view(report_id):
    report = store.get(report_id)
    claim = optional_claim(request.headers.get('Authorization'))
    entitled = is_entitled(claim, report_id)
    return report, entitled, view_for(report['content'], entitled)


@app.route('/api/report/<report_id>', methods=['GET'])
def get_report(report_id):
    """
    Return a stored report. Full content needs a token issued for this
    report; anything else (no token, expired, other report) gets the
    limited view.
    """
    try:
        report, entitled, content = _report_view(report_id)
        return jsonify({
            "success": True,
            "reportId": report['id'],
            "isPaid": entitled,
            "studentData": report['studentProfile'],
            "createdAt": report['createdAt'],
            "report": content,
        })
    except PlannerError as e:
        return _error_response(e)
    except Exception as e:
        print(f"Report retrieval error: {str(e)}")
        return jsonify({"success": False, "error": "INTERNAL_ERROR",
                        "message": "Failed to retrieve report."}), 500


@app.route('/api/report/<report_id>/html', methods=['GET'])
def get_report_html(report_id):
    """Render the report (full or limited) as an HTML page."""
    try:
        report, entitled, content = _report_view(report_id)
    except PlannerError as e:
        return _error_response(e)

    return render_template(
        'report.html',
        report=report,
        content=content,
        is_paid=entitled,
    )


@app.route('/api/report/<report_id>/pdf', methods=['GET'])
@limiter.limit("20 per hour")
def download_report_pdf(report_id):
    """
    Generate and return the full report as a PDF.
    Requires a bearer token issued for this exact report.
    """
    try:
        require_entitlement(request.headers.get('Authorization'), report_id)
        report = store.get(report_id)

        pdf_bytes = generate_plan_pdf(report)

        return Response(
            pdf_bytes,
            mimetype='application/pdf',
            headers={
                'Content-Disposition': f'attachment; filename=college-plan-{report_id}.pdf',
                'Content-Type': 'application/pdf',
                'Content-Length': str(len(pdf_bytes))
            }
        )

    except PlannerError as e:
        return _error_response(e)
    except Exception as e:
        print(f"PDF generation error: {str(e)}")
        return jsonify({"success": False, "error": "INTERNAL_ERROR",
                        "message": "Failed to generate PDF report."}), 500


# ============================================================
# LEMON SQUEEZY (CARD) ROUTES
# ============================================================

@app.route('/api/lemon-squeezy/create-checkout', methods=['POST'])
@limiter.limit("30 per hour")
def lemon_squeezy_create_checkout():
    """
    Create a Lemon Squeezy hosted checkout for a report.

    Accepts:
        JSON with reportId and optional email, name.

    Returns:
        JSON with checkoutUrl to redirect to.
    """
    try:
        data = request.get_json(silent=True) or {}
        report_id = str(data.get('reportId') or '').strip()
        if not report_id:
            return _bad_request("Missing reportId.")
        store.get(report_id)

        email = str(data.get('email') or '').strip()
        if email:
            from email_validator import validate_email, EmailNotValidError
            try:
                email = validate_email(email, check_deliverability=False).normalized
            except EmailNotValidError:
                return _bad_request("Please enter a valid email address.")

        result = create_checkout(report_id, email=email or None, name=data.get('name') or None)
        if result.get('error'):
            return jsonify({"success": False, "error": "CHECKOUT_FAILED", "message": result['error']}), 500

        return jsonify({"success": True, "checkoutUrl": result['checkout_url']})

    except PlannerError as e:
        return _error_response(e)
    except Exception as e:
        print(f"Lemon Squeezy checkout error: {str(e)}")
        return jsonify({"success": False, "error": "CHECKOUT_FAILED",
                        "message": "Could not create checkout."}), 500


@app.route('/api/lemon-squeezy/verify', methods=['POST'])
@limiter.limit("30 per hour")
def lemon_squeezy_verify():
    """
    Confirm a Lemon Squeezy order and issue a token for the report.

    Accepts:
        JSON with order_id and reportId.

    Returns:
        JSON with a signed token.
    """
    try:
        data = request.get_json(silent=True) or {}
        order_id = str(data.get('order_id') or '').strip()
        report_id = str(data.get('reportId') or '').strip()
        if not order_id or not report_id:
            return _bad_request("Missing required fields: order_id, reportId.")

        store.get(report_id)

        verification = verify_order(order_id)
        if not verification.get('verified'):
            print(f"Lemon Squeezy order {order_id} not verified: {verification.get('reason')}")
            raise PaymentVerificationFailed(verification.get('reason'))

        bound_report = store.claim_order(f"lsqy:{order_id}", report_id)
        if bound_report != report_id:
            raise PaymentVerificationFailed(
                "This order has already been used for another report.", status_code=409)

        token = issue_token(report_id, 'card', order_id=order_id)
        print(f"Lemon Squeezy payment verified: order={order_id} report={report_id}")
        return jsonify({
            "success": True,
            "message": "Payment verified successfully.",
            "token": token,
            "reportId": report_id,
        })

    except PlannerError as e:
        return _error_response(e)
    except Exception as e:
        print(f"Lemon Squeezy verification error: {str(e)}")
        return jsonify({"success": False, "error": "INTERNAL_ERROR",
                        "message": "Failed to verify payment."}), 500


# ============================================================
# KRYPTOGO (CRYPTO) ROUTES
# ============================================================

@app.route('/api/payment/initialize', methods=['POST'])
@limiter.limit("30 per hour")
def initialize_payment():
    """
    Create a payment record and a KryptoGO payment intent.

    Accepts:
        JSON with amount, currency (TWD or USD) and reportId.

    Returns:
        JSON with paymentId and paymentUrl.
    """
    try:
        data = request.get_json(silent=True) or {}
        amount = str(data.get('amount') or '').strip()
        currency = str(data.get('currency') or '').strip().upper()
        report_id = str(data.get('reportId') or '').strip()

        if not amount or not currency or not report_id:
            return _bad_request("Missing required fields: amount, currency, reportId.")
        if currency not in SUPPORTED_CURRENCIES:
            return _bad_request(f"Unsupported currency. Use one of: {', '.join(SUPPORTED_CURRENCIES)}.")

        store.get(report_id)

        payment_id = _new_payment_id()
        intent = create_payment_intent(payment_id, report_id, amount, currency)
        if intent.get('error'):
            return jsonify({"success": False, "error": "PAYMENT_INIT_FAILED", "message": intent['error']}), 500

        store.save_payment({
            "id": payment_id,
            "reportId": report_id,
            "amount": amount,
            "currency": currency,
            "status": "initiated",
            "createdAt": _now_iso(),
        })

        return jsonify({
            "success": True,
            "message": "Payment initialized successfully.",
            "data": {
                "paymentId": payment_id,
                "paymentUrl": intent['payment_url'],
            },
        })

    except PlannerError as e:
        return _error_response(e)
    except Exception as e:
        print(f"Payment initialization error: {str(e)}")
        return jsonify({"success": False, "error": "PAYMENT_INIT_FAILED",
                        "message": "Failed to initialize payment."}), 500


@app.route('/api/payment/verify', methods=['POST'])
@limiter.limit("30 per hour")
def verify_crypto_payment():
    """
    Confirm a crypto payment and issue a token for its report.

    Accepts:
        JSON with paymentId and txHash.

    Returns:
        JSON with a signed token and the reportId it unlocks.
    """
    try:
        data = request.get_json(silent=True) or {}
        payment_id = str(data.get('paymentId') or '').strip()
        tx_hash = str(data.get('txHash') or '').strip()
        if not payment_id or not tx_hash:
            return _bad_request("Missing required fields: paymentId, txHash.")

        record = store.get_payment(payment_id)
        if not record:
            return jsonify({"success": False, "error": "NOT_FOUND",
                            "message": "Payment record not found."}), 404

        verification = verify_payment(payment_id, tx_hash)
        if not verification.get('verified'):
            print(f"KryptoGO payment {payment_id} not verified: {verification.get('status')}")
            raise PaymentVerificationFailed(verification.get('reason'))

        report_id = record['reportId']
        bound_report = store.claim_order(f"tx:{tx_hash}", report_id)
        if bound_report != report_id:
            raise PaymentVerificationFailed(
                "This transaction has already been used for another report.", status_code=409)

        record.update({
            "status": "completed",
            "txHash": tx_hash,
            "completedAt": _now_iso(),
        })
        store.save_payment(record)

        token = issue_token(report_id, 'crypto', order_id=payment_id)
        print(f"KryptoGO payment verified: payment={payment_id} report={report_id}")
        return jsonify({
            "success": True,
            "message": "Payment verified successfully.",
            "token": token,
            "reportId": report_id,
        })

    except PlannerError as e:
        return _error_response(e)
    except Exception as e:
        print(f"Payment verification error: {str(e)}")
        return jsonify({"success": False, "error": "INTERNAL_ERROR",
                        "message": "Failed to verify payment."}), 500


@app.route('/api/payment/webhook', methods=['POST'])
@limiter.exempt
def payment_webhook():
    """
    KryptoGO webhook handler. Records status changes on payment records.
    Tokens are never issued from here.
    """
    payload = request.get_data()
    signature = request.headers.get('X-KryptoGO-Signature', '')

    if not verify_webhook_signature(payload, signature):
        print("KryptoGO webhook: invalid signature")
        return jsonify({"error": "Invalid signature."}), 401

    try:
        event = request.get_json(silent=True) or {}
        payment_id = event.get('payment_intent_id')
        status = event.get('status')
        tx_hash = event.get('tx_hash')

        record = store.get_payment(payment_id) if payment_id else None
        if not record:
            print(f"KryptoGO webhook: payment record not found for ID {payment_id}")
            return jsonify({"received": True}), 200

        # A verified payment stays completed
        if record.get('status') != 'completed' and status:
            record['status'] = status
        if tx_hash:
            record['txHash'] = tx_hash
        record['updatedAt'] = _now_iso()
        store.save_payment(record)

        print(f"KryptoGO webhook received: ID={payment_id}, Status={status}")
        return jsonify({"received": True}), 200

    except Exception as e:
        # Acknowledge anyway so the provider does not retry forever
        print(f"Webhook processing error: {str(e)}")
        return jsonify({"received": True}), 200


@app.route('/api/payment/verify-status', methods=['GET'])
def payment_verify_status():
    """
    Check whether the bearer token unlocks the report in ?reportId=.
    """
    token = bearer_token(request.headers.get('Authorization'))
    if not token:
        return _error_response(InvalidClaim("Access denied. No token provided.", status_code=401))

    try:
        claim = verify_token(token)
    except InvalidClaim as e:
        return _error_response(e)

    current_report_id = request.args.get('reportId') or None
    return jsonify({
        "success": True,
        "isPaid": is_entitled(claim, current_report_id),
        "tokenReportId": claim.get('reportId'),
        "currentReportId": current_report_id,
    })


@app.route('/api/payment/<payment_id>', methods=['GET'])
def get_payment_status(payment_id):
    """Return the status of one payment record."""
    record = store.get_payment(payment_id)
    if not record:
        return jsonify({"success": False, "error": "NOT_FOUND",
                        "message": "Payment record not found."}), 404

    return jsonify({
        "success": True,
        "data": {
            "id": record['id'],
            "status": record['status'],
            "amount": record['amount'],
            "currency": record['currency'],
            "createdAt": record['createdAt'],
            "completedAt": record.get('completedAt'),
        },
    })


@app.route('/api/health', methods=['GET'])
@limiter.exempt
def health_check():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "ai_enabled": ai_enabled(),
        "store": store.backend,
    })


# ============================================================
# SECURITY HEADERS
# ============================================================

@app.after_request
def add_security_headers(response):
    """Add security headers to every response."""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'SAMEORIGIN'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    response.headers['Permissions-Policy'] = 'camera=(), microphone=(), geolocation=()'
    # Report content and tokens must not be cached by browsers or proxies
    if request.path.startswith(('/api/report/', '/api/auth/', '/api/payment/', '/api/lemon-squeezy/')):
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
        response.headers['Pragma'] = 'no-cache'
    if not app.debug:
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    return response


# ============================================================
# ERROR HANDLERS
# ============================================================

@app.errorhandler(PlannerError)
def planner_error(e):
    return _error_response(e)


@app.errorhandler(429)
def ratelimit_handler(e):
    if request.path == '/api/report/generate':
        message = "You have reached your daily limit of free reports. Please try again tomorrow."
    else:
        message = "Too many requests. Please wait a moment and try again."
    return jsonify({
        "success": False,
        "error": "TOO_MANY_REQUESTS",
        "message": message,
    }), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify({"success": False, "error": "NOT_FOUND", "message": "Not found."}), 404


@app.errorhandler(405)
def method_not_allowed(e):
    return jsonify({"success": False, "error": "METHOD_NOT_ALLOWED", "message": "Method not allowed."}), 405


@app.errorhandler(500)
def server_error(e):
    return jsonify({"success": False, "error": "INTERNAL_ERROR",
                    "message": "Internal server error. Please try again."}), 500


# ============================================================
# RUN
# ============================================================

if __name__ == '__main__':
    port = int(os.getenv('PORT', 5001))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'
    print(f"\n🎓 College Planner running at http://localhost:{port}")
    print(f"   Debug mode: {'On' if debug else 'Off'}\n")
    app.run(host='0.0.0.0', port=port, debug=debug)
