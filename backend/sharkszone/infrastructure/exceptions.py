"""
Custom Exceptions for SharksZone Billing

Hierarchical exception classes for proper error handling across layers.
Each class carries the machine-readable ``error_code`` and the HTTP status
the API layer answers with; ``to_dict`` is the client-facing body.
"""

from typing import Optional, Dict, Any


class SharksZoneError(Exception):
    """Base exception for all SharksZone billing errors."""

    error_code = "server_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        body: Dict[str, Any] = {
            "success": False,
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


# =============================================================================
# Configuration
# =============================================================================

class ConfigurationError(SharksZoneError):
    """Raised when configuration is missing or invalid."""

    error_code = "missing_config"

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)


class CredentialsMissing(ConfigurationError):
    """Client id or secret (or webhook id) absent for the resolved PayPal mode."""
    pass


# =============================================================================
# Payment gateway
# =============================================================================

class GatewayError(SharksZoneError):
    """Raised when the payment provider rejects or cannot complete a call."""

    error_code = "gateway_error"
    status_code = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        name: Optional[str] = None,
        debug_id: Optional[str] = None,
        details: Optional[Any] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message, original_error=original_error)
        if status_code is not None:
            self.status_code = status_code
        self.name = name
        self.debug_id = debug_id
        self.provider_details = details

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.name:
            body["name"] = self.name
        if self.debug_id:
            body["debug_id"] = self.debug_id
        if self.provider_details:
            body["details"] = self.provider_details
        return body


class GatewayAuthFailed(GatewayError):
    """PayPal refused the client-credentials exchange."""
    error_code = "gateway_auth_failed"
    status_code = 502


class GatewayRequestFailed(GatewayError):
    """PayPal answered a call with a non-2xx status (status is passed through)."""
    error_code = "gateway_request_failed"


class GatewayUnavailable(GatewayError):
    """A read-only call timed out or could not reach PayPal."""
    error_code = "gateway_unavailable"
    status_code = 503


class Indeterminate(GatewayError):
    """
    A side-effecting call failed in a way that leaves the outcome unknown.

    Never retried automatically; reconcile with sync_with_paypal instead.
    """
    error_code = "indeterminate"
    status_code = 504


class CapturedButNotCompleted(GatewayError):
    """Capture call succeeded but PayPal did not report COMPLETED."""
    error_code = "capture_not_completed"
    status_code = 400

    def __init__(self, message: str, capture_status: Optional[str] = None, raw: Optional[dict] = None):
        super().__init__(message)
        self.capture_status = capture_status
        self.raw = raw or {}

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["status"] = self.capture_status
        return body


class RemoteCancelFailed(GatewayError):
    """
    Best-effort PayPal cancellation failed.

    Never raised across the API boundary: callers convert it into a warning
    attached to the local cancellation result.
    """
    error_code = "remote_cancel_failed"


# =============================================================================
# Validation
# =============================================================================

class ValidationError(SharksZoneError):
    """Raised when input validation fails."""
    error_code = "validation_error"
    status_code = 400


class MissingSubscriptionId(ValidationError):
    error_code = "missing_subscription_id"


class MissingOrderId(ValidationError):
    error_code = "missing_order_id"


class ConfirmationRequired(ValidationError):
    error_code = "confirmation_required"


class InvalidAmount(ValidationError):
    error_code = "invalid_amount"


class InvalidAction(ValidationError):
    error_code = "invalid_action"


# =============================================================================
# Authorization
# =============================================================================

class AuthorizationError(SharksZoneError):
    """Raised when the caller's identity is missing or not allowed."""
    error_code = "auth_required"
    status_code = 401


class Unauthorized(AuthorizationError):
    pass


class PermissionDenied(AuthorizationError):
    error_code = "permission_denied"
    status_code = 403


# =============================================================================
# Subscription state
# =============================================================================

class StateError(SharksZoneError):
    """Request is well-formed but does not apply to the current state."""
    error_code = "invalid_state"
    status_code = 400


class ConcurrentModification(StateError):
    """The record changed between read and conditional write."""
    error_code = "concurrent_modification"
    status_code = 409


# =============================================================================
# Webhook verification
# =============================================================================

class VerificationError(SharksZoneError):
    """Webhook authenticity could not be established."""
    error_code = "verification_failed"
    status_code = 400


class MissingVerificationHeaders(VerificationError):
    error_code = "missing_verification_headers"

    def __init__(self, missing_headers: list[str]):
        super().__init__(
            "Missing PayPal verification headers",
            details={"missing_headers": missing_headers},
        )


class InvalidSignature(VerificationError):
    error_code = "invalid_signature"
    status_code = 401


# =============================================================================
# Database
# =============================================================================

class DatabaseError(SharksZoneError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)

    def to_dict(self) -> Dict[str, Any]:
        # Schema details stay in the server log.
        return {
            "success": False,
            "error": "server_error",
            "message": "Internal server error",
        }


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass
