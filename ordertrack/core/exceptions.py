"""
Error Taxonomy

Every failure the tracking core can report. Each error carries the HTTP
status the API layer answers with, so route handlers can translate them
in one place.
"""

from typing import Optional


class OrderTrackError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    error: str = "order_track_error"

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.order_id = order_id

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON error bodies."""
        return {
            "success": False,
            "error": self.error,
            "detail": self.message,
        }


class InvalidTransition(OrderTrackError):
    """The requested status is unknown or not reachable from the current one."""

    status_code = 409
    error = "invalid_transition"


class OrderNotFound(OrderTrackError):
    """The referenced order does not exist."""

    status_code = 404
    error = "not_found"


class Unauthorized(OrderTrackError):
    """The actor has no authority over this order."""

    status_code = 403
    error = "unauthorized"


class StorageFailure(OrderTrackError):
    """The order store failed to read or persist. Not retried automatically."""

    status_code = 503
    error = "storage_failure"


class TopicAuthorizationDenied(OrderTrackError):
    """A join request named a topic outside the caller's entitlement."""

    status_code = 403
    error = "topic_authorization_denied"

    def __init__(self, message: str, topic: str):
        super().__init__(message)
        self.topic = topic


class DeliveryFailure(OrderTrackError):
    """A single connection could not be written to during publish."""

    error = "delivery_failure"

    def __init__(self, message: str, connection_id: str):
        super().__init__(message)
        self.connection_id = connection_id


class PaymentVerificationFailed(OrderTrackError):
    """The payment provider did not confirm the payment."""

    status_code = 402
    error = "payment_verification_failed"
