"""
API Dependencies

FastAPI dependency injection for authentication, the PayPal client and the
billing services.

Security: JWT tokens are verified cryptographically using Supabase JWKS (ES256)
with HS256 fallback via the JWT secret. Never decode without verification.
The token comes from the Authorization header or, for browser requests, from
the Supabase session cookie; both paths go through the same verification.
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Literal, Optional

import jwt
from jwt import PyJWKClient
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from sharkszone.config.settings import get_settings
from sharkszone.infrastructure.db.dependencies import SessionDep
from sharkszone.infrastructure.exceptions import ConfigurationError, Unauthorized
from sharkszone.infrastructure.payments.paypal_client import PayPalClient
from sharkszone.infrastructure.services.checkout_service import CheckoutService
from sharkszone.infrastructure.services.reconciliation_service import ReconciliationService
from sharkszone.infrastructure.services.webhook_service import WebhookService


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

SESSION_COOKIE = "sb-access-token"

# Cached JWKS client, refreshed by PyJWKClient itself
_jwks_client: Optional[PyJWKClient] = None


@dataclass(frozen=True)
class AuthContext:
    """Verified identity of the caller."""
    user_id: str
    email: Optional[str]
    source: Literal["bearer", "cookie"]


def _get_jwks_client() -> PyJWKClient:
    """Return a singleton PyJWKClient for the Supabase JWKS endpoint."""
    global _jwks_client
    if _jwks_client is None:
        settings = get_settings()
        jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True)
    return _jwks_client


def _decode_with_jwks(token: str, issuer: str) -> dict:
    """Verify JWT using Supabase JWKS endpoint (ES256 asymmetric keys)."""
    client = _get_jwks_client()
    signing_key = client.get_signing_key_from_jwt(token)
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=["ES256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


def _decode_with_secret(token: str, secret: str, issuer: str) -> dict:
    """Verify JWT using HS256 symmetric secret (legacy Supabase signing)."""
    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


def verify_supabase_token(token: str) -> dict:
    """
    Verify a Supabase access token and return its claims.

    Verification strategy (in order):
      1. JWKS (ES256), supports key rotation automatically.
      2. HS256 with ``SUPABASE_JWT_SECRET``, fallback for legacy signing.

    Raises:
        Unauthorized: token expired, invalid, or missing the user id.
    """
    settings = get_settings()
    issuer = f"{settings.supabase_url}/auth/v1"

    payload: Optional[dict] = None

    try:
        payload = _decode_with_jwks(token, issuer)
    except (jwt.exceptions.PyJWKClientError, jwt.InvalidTokenError) as jwks_err:
        logger.debug("JWKS verification failed, trying HS256 fallback: %s", jwks_err)

    if payload is None and settings.supabase_jwt_secret:
        try:
            payload = _decode_with_secret(token, settings.supabase_jwt_secret, issuer)
        except jwt.ExpiredSignatureError:
            raise Unauthorized("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.warning("HS256 JWT verification also failed: %s", e)

    if payload is None:
        raise Unauthorized("Invalid or unverifiable token")

    if not payload.get("sub"):
        raise Unauthorized("Invalid token: missing user ID")

    return payload


async def get_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthContext:
    """
    Resolve the caller once per request: bearer token first, then session cookie.

    Raises:
        Unauthorized: no token, or the token does not verify.
    """
    if credentials and credentials.credentials:
        token, source = credentials.credentials, "bearer"
    elif request.cookies.get(SESSION_COOKIE):
        token, source = request.cookies[SESSION_COOKIE], "cookie"
    else:
        raise Unauthorized("Missing authorization token")

    payload = verify_supabase_token(token)
    return AuthContext(user_id=payload["sub"], email=payload.get("email"), source=source)


AuthDep = Annotated[AuthContext, Depends(get_auth_context)]


# =============================================================================
# Services
# =============================================================================

def get_paypal_client(request: Request) -> PayPalClient:
    """PayPal client created in the application lifespan."""
    client = getattr(request.app.state, "paypal_client", None)
    if client is None:
        raise ConfigurationError("PayPal client is not initialized")
    return client


PayPalClientDep = Annotated[PayPalClient, Depends(get_paypal_client)]


async def get_reconciliation_service(
    session: SessionDep,
    gateway: PayPalClientDep,
) -> ReconciliationService:
    return ReconciliationService(session, gateway)


ReconciliationDep = Annotated[ReconciliationService, Depends(get_reconciliation_service)]


async def get_checkout_service(
    session: SessionDep,
    reconciliation: ReconciliationDep,
) -> CheckoutService:
    settings = get_settings()
    return CheckoutService(
        session,
        reconciliation,
        expected_price=settings.pro_plan_price,
        period_days=settings.subscription_period_days,
    )


async def get_webhook_service(
    session: SessionDep,
    gateway: PayPalClientDep,
    reconciliation: ReconciliationDep,
) -> WebhookService:
    return WebhookService(session, gateway, reconciliation)


CheckoutDep = Annotated[CheckoutService, Depends(get_checkout_service)]
WebhookServiceDep = Annotated[WebhookService, Depends(get_webhook_service)]
