"""
HTTP entry point.

Run locally:
    uvicorn marketplace.main:app --reload
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from marketplace import __version__
from marketplace.api.routes import entitlements, reservations, wallet
from marketplace.config.settings import LOG_LEVEL
from marketplace.platform.errors import ErrorHandlerMiddleware, get_correlation_id
from marketplace.services.event_publisher import EventPublisher

logger = logging.getLogger(__name__)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query strings use the VALIDATION_ERROR shape."""
    correlation_id = get_correlation_id(request)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request",
                "details": {
                    "errors": [
                        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
                        for err in exc.errors()
                    ],
                },
            }
        },
        headers={"X-Correlation-ID": correlation_id},
    )


def create_app(event_publisher: Optional[EventPublisher] = None) -> FastAPI:
    """
    Build the application.

    Args:
        event_publisher: Notification sink for reservation events
            (default: log-only publisher)
    """
    app = FastAPI(
        title="Marketplace Engine API",
        description="Entitlements, reservations and wallets for the marketplace",
        version=__version__,
    )
    app.state.event_publisher = event_publisher

    app.add_middleware(ErrorHandlerMiddleware)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    app.include_router(reservations.router)
    app.include_router(wallet.router)
    app.include_router(entitlements.router)

    @app.get("/health")
    def health():
        return {"status": "ok", "version": __version__}

    return app


def _configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


_configure_logging()
app = create_app()
