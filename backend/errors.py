"""
College Planner -- Error Taxonomy
Every failure a route can report to the client maps onto one of these.
"""


class PlannerError(Exception):
    """Base class. Carries the HTTP status and a machine-readable code."""

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Something went wrong. Please try again."

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
        }


class GenerationUnavailable(PlannerError):
    """The AI call failed, timed out, or returned content we could not parse."""

    status_code = 503
    code = "GENERATION_UNAVAILABLE"
    default_message = "Report generation is temporarily unavailable. Please try again later."


class ReportNotFound(PlannerError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Report not found."


class InvalidClaim(PlannerError):
    """Bad signature, expired, malformed, or issued for a different report."""

    status_code = 403
    code = "INVALID_CLAIM"
    default_message = "Access denied. Invalid or expired token."


class PaymentVerificationFailed(PlannerError):
    status_code = 402
    code = "PAYMENT_VERIFICATION_FAILED"
    default_message = "We could not confirm your payment. Please try again."
