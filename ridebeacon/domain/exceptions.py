"""
Domain error taxonomy.

Each error carries the HTTP status it maps to and a machine-stable
``reason`` that API clients can switch on.  The API layer renders them
in ``ridebeacon.api.errors``; nothing below the API layer knows about
HTTP beyond these two attributes.
"""

from __future__ import annotations


class RideBeaconError(Exception):
    status_code: int = 500
    reason: str = "internal_error"

    def __init__(self, message: str = "", *, reason: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.reason)
        if reason:
            self.reason = reason

    @property
    def message(self) -> str:
        return str(self)


class ValidationFailed(RideBeaconError):
    """Request input is missing or malformed."""

    status_code = 400
    reason = "validation_error"


class AuthenticationFailed(RideBeaconError):
    """Missing, invalid or expired credential."""

    status_code = 401
    reason = "unauthorized"


class NotFound(RideBeaconError):
    """Requested entity does not exist."""

    status_code = 404
    reason = "not_found"


class RideNotFound(NotFound):
    """Ride not found."""

    reason = "ride_not_found"


class UserNotFound(NotFound):
    """User not found."""

    reason = "user_not_found"


class RideConflict(RideBeaconError):
    """Another driver already claimed this ride."""

    status_code = 409
    reason = "ride_already_taken"


class InvalidStateTransition(RideBeaconError):
    """Raised when a ride status change violates the state machine."""

    status_code = 409
    reason = "invalid_transition"


class SignatureVerificationFailed(RideBeaconError):
    """Webhook signature did not match the shared secret."""

    status_code = 400
    reason = "invalid_signature"


class UpstreamUnavailable(RideBeaconError):
    """An external provider call failed."""

    status_code = 502
    reason = "upstream_unavailable"


class UpstreamTimeout(RideBeaconError):
    """An external provider call exceeded its timeout."""

    status_code = 504
    reason = "upstream_timeout"


class PayoutInProgress(RideBeaconError):
    """Another payout for this driver is still being processed."""

    status_code = 409
    reason = "payout_in_progress"
