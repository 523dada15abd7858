"""
Unit tests for the exception hierarchy and its client-facing bodies.
"""

from sharkszone.infrastructure.exceptions import (
    ConcurrentModification,
    CredentialsMissing,
    DatabaseError,
    GatewayRequestFailed,
    GatewayUnavailable,
    Indeterminate,
    InvalidSignature,
    MissingVerificationHeaders,
    NotFoundError,
    PermissionDenied,
    Unauthorized,
)


class TestStatusCodes:

    def test_status_codes(self):
        assert Unauthorized("x").status_code == 401
        assert PermissionDenied("x").status_code == 403
        assert ConcurrentModification("x").status_code == 409
        assert GatewayUnavailable("x").status_code == 503
        assert Indeterminate("x").status_code == 504
        assert InvalidSignature("x").status_code == 401
        assert MissingVerificationHeaders(["paypal-auth-algo"]).status_code == 400

    def test_gateway_failure_passes_provider_status_through(self):
        error = GatewayRequestFailed("Not found", status_code=404, name="RESOURCE_NOT_FOUND", debug_id="abc")

        assert error.status_code == 404
        assert error.to_dict() == {
            "success": False,
            "error": "gateway_request_failed",
            "message": "Not found",
            "name": "RESOURCE_NOT_FOUND",
            "debug_id": "abc",
        }


class TestBodies:

    def test_missing_config_lists_keys(self):
        body = CredentialsMissing("PayPal sandbox credentials are not configured", missing_keys=["client_id"]).to_dict()

        assert body["error"] == "missing_config"
        assert body["details"] == {"missing_keys": ["client_id"]}

    def test_database_errors_hide_schema(self):
        for error in (
            DatabaseError("insert failed", operation="insert", table="webhook_events"),
            NotFoundError("Plan 'pro' is not seeded", operation="select", table="subscription_plans"),
        ):
            assert error.status_code == 500
            assert error.to_dict() == {
                "success": False,
                "error": "server_error",
                "message": "Internal server error",
            }
            assert error.details["table"]
