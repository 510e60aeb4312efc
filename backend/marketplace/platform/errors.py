"""
Consistent error handling for the marketplace core.

Every expected, recoverable failure is an AppError subclass carrying a
machine-readable code and a human-readable message. Nothing here is retried;
callers re-submit. Stack traces are NEVER returned to clients.

Standard HTTP status codes:
- 400: Bad Request (validation errors, invalid amounts)
- 401: Unauthenticated (no account context)
- 402: Payment Required (insufficient wallet funds)
- 403: Forbidden (quota exceeded, actor not a party to the reservation)
- 404: Not Found
- 409: Conflict (transition not allowed from the current state)
- 500: Internal Server Error (store failure)
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class AppError(Exception):
    """
    Base application error with consistent error shape.

    All custom errors should inherit from this class.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to API error response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class AuthenticationError(AppError):
    """No authenticated account on the request (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            code="AUTHENTICATION_ERROR",
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class UnauthorizedError(AppError):
    """Actor is neither buyer nor seller of the target reservation (403)."""

    def __init__(self, message: str = "Not a party to this reservation", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource},
        )
        self.resource = resource
        self.identifier = identifier


class InvalidTransitionError(AppError):
    """Reservation action not allowed from the current state or for this role (409)."""

    def __init__(
        self,
        action: str,
        current_status: Optional[str],
        message: Optional[str] = None,
    ):
        self.action = action
        self.current_status = current_status
        super().__init__(
            code="INVALID_TRANSITION",
            message=message or f"Cannot {action} a reservation in status '{current_status}'",
            status_code=status.HTTP_409_CONFLICT,
            details={"action": action, "current_status": current_status},
        )


class InvalidAmountError(AppError):
    """Non-positive ledger amount (400)."""

    def __init__(self, amount: Any):
        self.amount = amount
        super().__init__(
            code="INVALID_AMOUNT",
            message="Amount must be a positive integer",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"amount": amount},
        )


class InsufficientFundsError(AppError):
    """Wallet balance below the requested debit (402)."""

    def __init__(self, account_id: str, balance: int, requested: int):
        self.account_id = account_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            code="INSUFFICIENT_FUNDS",
            message="Insufficient wallet balance",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"current_balance": balance, "requested": requested},
        )


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """
    Get correlation ID from request or generate new one.

    Checks X-Correlation-ID header first, then request state.
    """
    correlation_id = request.headers.get("X-Correlation-ID")
    if correlation_id:
        return correlation_id

    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id

    return generate_correlation_id()


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware that catches all exceptions and returns consistent error responses.

    IMPORTANT: Stack traces are NEVER returned to clients.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except AppError as e:
            logger.warning(
                "Application error",
                extra={
                    "correlation_id": correlation_id,
                    "error_code": e.code,
                    "status_code": e.status_code,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=e.status_code,
                content=e.to_dict(),
                headers={"X-Correlation-ID": correlation_id},
            )

        except Exception as e:
            # Store failures land here; the session dependency already rolled back
            logger.exception(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred",
                        "details": {"correlation_id": correlation_id},
                    }
                },
                headers={"X-Correlation-ID": correlation_id},
            )
