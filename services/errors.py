"""Error taxonomy shared by the booking and payment services.

Every error carries the HTTP status and a short machine code so the Flask
error handler in ``app.py`` can turn it into ``{"error": ..., "code": ...}``.
"""


class PlatformError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message=None, **details):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self):
        out = {"error": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class InvalidInput(PlatformError):
    status_code = 400
    code = "invalid_input"


class NotFound(PlatformError):
    status_code = 404
    code = "not_found"


class AuthenticationRequired(PlatformError):
    status_code = 401
    code = "authentication_required"


class Unauthorized(PlatformError):
    status_code = 403
    code = "unauthorized"


class Conflict(PlatformError):
    status_code = 409
    code = "conflict"


class SlotConflict(Conflict):
    code = "slot_conflict"


class PodUnavailable(Conflict):
    code = "pod_unavailable"


class InvalidTransition(Conflict):
    code = "invalid_transition"


class InvariantViolation(PlatformError):
    status_code = 422
    code = "invariant_violation"


class RefundExceedsEligible(InvariantViolation):
    code = "refund_exceeds_eligible"


class ExternalServiceError(PlatformError):
    status_code = 502
    code = "external_service_error"

    def __init__(self, message=None, operation=None, upstream_message=None, upstream_status=None, **details):
        if operation:
            details["operation"] = operation
        super().__init__(message or "Payment gateway request failed", **details)
        self.operation = operation
        # gateway wording stays in the logs, never in response bodies
        self.upstream_message = upstream_message
        self.upstream_status = upstream_status


class PaymentCreationFailed(ExternalServiceError):
    code = "payment_creation_failed"


class NoProviderConfigured(ExternalServiceError):
    status_code = 503
    code = "no_provider_configured"


class InvalidSignature(PlatformError):
    status_code = 401
    code = "invalid_signature"


class OperationFailed(PlatformError):
    code = "operation_failed"
