"""
Error handling tests.

CRITICAL: These tests verify that:
1. All errors return consistent shapes and status codes
2. Stack traces are never returned to clients
3. Correlation IDs are included in responses
"""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from marketplace.entitlements.errors import QuotaExceededError, UnknownTierError
from marketplace.platform.errors import (
    AppError,
    ErrorHandlerMiddleware,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)


class TestErrorClasses:
    """Codes and status codes per error kind."""

    def test_app_error_to_dict(self):
        error = AppError(code="TEST_ERROR", message="Test message", details={"extra": "info"})
        assert error.to_dict() == {
            "error": {"code": "TEST_ERROR", "message": "Test message", "details": {"extra": "info"}}
        }

    def test_quota_exceeded(self):
        error = QuotaExceededError("ads", "free", "Limit reached")
        assert error.code == "QUOTA_EXCEEDED"
        assert error.status_code == 403
        assert error.details == {"limit_kind": "ads", "tier": "free"}

    def test_invalid_transition(self):
        error = InvalidTransitionError("accept", "completed")
        assert error.code == "INVALID_TRANSITION"
        assert error.status_code == 409
        assert "completed" in error.message

    def test_insufficient_funds(self):
        error = InsufficientFundsError("acc-1", 100, 150)
        assert error.code == "INSUFFICIENT_FUNDS"
        assert error.status_code == 402
        assert error.details == {"current_balance": 100, "requested": 150}

    def test_invalid_amount(self):
        error = InvalidAmountError(-5)
        assert error.code == "INVALID_AMOUNT"
        assert error.status_code == 400

    def test_not_found(self):
        error = NotFoundError("Reservation", "r-1")
        assert error.status_code == 404
        assert "r-1" in error.message

    def test_unauthorized(self):
        error = UnauthorizedError()
        assert error.code == "UNAUTHORIZED"
        assert error.status_code == 403

    def test_unknown_tier_is_not_found(self):
        error = UnknownTierError("gold")
        assert isinstance(error, NotFoundError)
        assert error.tier == "gold"

    def test_validation(self):
        assert ValidationError("bad").status_code == 400


def _app():
    app = FastAPI()
    app.add_middleware(ErrorHandlerMiddleware)

    @app.get("/quota")
    def quota():
        raise QuotaExceededError("photos", "free", "Too many photos")

    @app.get("/boom")
    def boom():
        raise RuntimeError("database exploded at line 42")

    @app.get("/ok")
    def ok():
        return {"ok": True}

    return app


class TestErrorHandlerMiddleware:

    def test_app_error_shape(self):
        response = TestClient(_app()).get("/quota")
        assert response.status_code == 403
        body = response.json()
        assert body["error"]["code"] == "QUOTA_EXCEEDED"
        assert body["error"]["message"] == "Too many photos"
        assert "X-Correlation-ID" in response.headers

    def test_unexpected_error_hides_details(self):
        response = TestClient(_app(), raise_server_exceptions=False).get("/boom")
        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "INTERNAL_ERROR"
        assert "exploded" not in response.text

    def test_correlation_id_is_echoed(self):
        response = TestClient(_app()).get("/ok", headers={"X-Correlation-ID": "corr-123"})
        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "corr-123"
