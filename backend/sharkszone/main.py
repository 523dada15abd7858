"""
SharksZone Billing - FastAPI Application

Main entry point for the subscription backend.
Provides subscription management, PayPal checkout and PayPal webhooks.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from sharkszone.config.paypal import PayPalConfig
from sharkszone.config.settings import settings
from sharkszone.infrastructure.exceptions import SharksZoneError
from sharkszone.infrastructure.payments.paypal_client import PayPalClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info(f"SharksZone billing backend starting in {settings.environment} mode...")

    paypal_config = PayPalConfig.from_settings(settings)
    app.state.paypal_client = PayPalClient(paypal_config)
    logger.info(
        f"PayPal client ready: mode={paypal_config.mode} "
        f"credentials={'ok' if paypal_config.credentials.complete else 'incomplete'} "
        f"webhook_id={'set' if paypal_config.webhook_id else 'missing'}"
    )

    if settings.database_url or settings.supabase_password:
        try:
            from sharkszone.infrastructure.db.database import init_db
            await init_db()
            logger.info("Database connection pool initialized")
        except Exception as e:
            logger.warning(f"Database initialization skipped: {e}")

    yield

    await app.state.paypal_client.close()

    if settings.database_url or settings.supabase_password:
        try:
            from sharkszone.infrastructure.db.database import close_db
            await close_db()
            logger.info("Database connection pool closed")
        except Exception as e:
            logger.warning(f"Database shutdown error: {e}")

    logger.info("SharksZone billing backend shutting down...")


app = FastAPI(
    title="SharksZone Billing",
    description="Subscription lifecycle and PayPal integration for SharksZone",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(SharksZoneError)
async def sharkszone_error_handler(request: Request, exc: SharksZoneError):
    """Render any application error with its own status and envelope."""
    if exc.status_code >= 500:
        logger.error(
            f"{request.method} {request.url.path} failed: {exc.error_code} {exc.message}",
            exc_info=exc.original_error,
        )
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.error_code}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    """Log database failures with context; never leak them to the client."""
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "server_error", "message": "Internal server error"},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies use the same error envelope."""
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "validation_error",
            "message": "Invalid request body",
            "details": {"errors": jsonable_errors(exc)},
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "sharkszone-billing"}


# ============================================================================
# Import and register routers
# ============================================================================

from sharkszone.api.routes import subscriptions, checkout, paypal, webhooks  # noqa: E402

app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(checkout.router, prefix="/api", tags=["Checkout"])
app.include_router(paypal.router, prefix="/api", tags=["PayPal"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
