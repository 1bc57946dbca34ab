"""Domain exceptions for settlement and webhook ingestion.

Services raise these; the error handler registered in create_app() turns
them into JSON responses using ``status_code``. ``public_message`` is what
the client sees, which for server-side failures is deliberately vaguer than
``message`` (the latter goes to the logs).
"""


class MarketplaceError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "internal_error"
    public_message = None

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        return {
            "success": False,
            "error": self.public_message or self.message,
            "code": self.code,
        }


class ValidationError(MarketplaceError):
    status_code = 400
    code = "validation_error"


class NotFound(MarketplaceError):
    status_code = 404
    code = "not_found"


class Forbidden(MarketplaceError):
    status_code = 403
    code = "forbidden"


class InvalidState(MarketplaceError):
    """Booking status precondition not met."""

    status_code = 409
    code = "invalid_state"


class ConcurrentModification(MarketplaceError):
    """Another request claimed or changed the booking first."""

    status_code = 409
    code = "concurrent_modification"
    public_message = "This booking is already being checked out."


class PaymentConfigurationError(MarketplaceError):
    """Booking has no payment intent. Upstream bug, not a user error."""

    status_code = 500
    code = "payment_configuration_error"
    public_message = "This booking cannot be settled. Please contact support."


class PaymentCaptureFailed(MarketplaceError):
    """Capture failed; nothing was written, safe to retry."""

    status_code = 500
    code = "payment_capture_failed"
    public_message = "We couldn't process the payment. No charge was made, please try again."


class CriticalInconsistency(MarketplaceError):
    """Capture succeeded but the booking could not be marked completed."""

    status_code = 500
    code = "internal_error"
    public_message = "Something went wrong completing this booking. Please contact support."


class SignatureInvalid(MarketplaceError):
    status_code = 400
    code = "signature_invalid"
    public_message = "Invalid signature"


class ProviderError(MarketplaceError):
    """Background-check provider call failed."""

    status_code = 500
    code = "provider_error"
    public_message = "Webhook processing failed"
