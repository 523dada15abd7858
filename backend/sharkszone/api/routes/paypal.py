"""
PayPal API Routes

Order / authorization capture for the checkout page and a configuration
diagnostics endpoint that reports which variables were used, never values.
"""

import logging
from typing import Optional

from fastapi import APIRouter

from sharkszone.api.dependencies import PayPalClientDep
from sharkszone.api.responses import NO_STORE, success
from sharkszone.config.paypal import describe_credential_sources, resolve_paypal_mode
from sharkszone.config.settings import get_settings
from sharkszone.domain.subscription import CaptureAuthorizationRequest, CaptureOrderRequest
from sharkszone.infrastructure.exceptions import MissingOrderId, ValidationError


logger = logging.getLogger(__name__)

router = APIRouter()


def _mask(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return f"...{value[-4:]}"


@router.post("/paypal/capture-order")
async def capture_order(body: CaptureOrderRequest, paypal: PayPalClientDep):
    """Capture an approved PayPal order."""
    if not body.order_id:
        raise MissingOrderId("Order ID is required")

    result = await paypal.capture_order(body.order_id)
    return success(
        "Payment captured",
        result.model_dump(mode="json", exclude={"raw"}),
    )


@router.post("/paypal/capture-authorization")
async def capture_authorization(body: CaptureAuthorizationRequest, paypal: PayPalClientDep):
    """Capture the full amount of an authorized payment."""
    if not body.authorization_id:
        raise ValidationError("Authorization ID is required")

    result = await paypal.capture_authorization(body.authorization_id)
    return success(
        "Authorization captured",
        result.model_dump(mode="json", exclude={"raw"}),
    )


@router.get("/paypal/check-config")
async def check_config(paypal: PayPalClientDep):
    """Report the resolved PayPal mode and which variables supplied credentials."""
    env = get_settings().paypal_environment()
    config = paypal.config
    mode = resolve_paypal_mode(env)

    server_ok = config.credentials.complete
    client_ok = bool(config.credentials.client_id)
    data = {
        "mode": config.mode,
        "configured_mode": mode,
        "base_url": config.base_url,
        "server_credentials_ok": server_ok,
        "client_credentials_ok": client_ok,
        "webhooks_configured": bool(config.webhook_id),
        "webhook_id_suffix": _mask(config.webhook_id),
        "overall_status": "ready" if server_ok and client_ok else "incomplete",
        "fallback_info": describe_credential_sources(config.mode, env),
        "presence": {name: bool(value) for name, value in sorted(env.items())},
    }
    return success("PayPal configuration", data, headers=NO_STORE)
