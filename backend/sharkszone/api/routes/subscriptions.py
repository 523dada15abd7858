"""
Subscription API Routes

Cancel, switch-to-free, sync and validate endpoints, plus the unified
``/subscription/manage`` endpoint the dashboard posts actions to.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from sharkszone.api.dependencies import AuthDep, AuthContext, ReconciliationDep
from sharkszone.api.responses import NO_STORE, already_free, success
from sharkszone.domain.subscription import (
    CancelSubscriptionRequest,
    CancellationResult,
    ManageAction,
    ManageSubscriptionRequest,
    SwitchToFreeRequest,
    SyncResult,
    ValidateSubscriptionRequest,
)
from sharkszone.infrastructure.exceptions import InvalidAction
from sharkszone.infrastructure.services.reconciliation_service import ReconciliationService


logger = logging.getLogger(__name__)

router = APIRouter()


def _request_metadata(request: Request, extra: Optional[dict[str, Any]]) -> dict[str, Any]:
    return {
        "user_agent": request.headers.get("user-agent"),
        "ip": request.headers.get("x-forwarded-for") or (request.client.host if request.client else "unknown"),
        **(extra or {}),
    }


def _cancellation_response(result: CancellationResult, message: str) -> JSONResponse:
    if result.already_free:
        return already_free()
    data = result.model_dump(mode="json", exclude={"success", "already_free"})
    return success(message, data)


def _sync_response(result: SyncResult) -> JSONResponse:
    if not result.synced:
        message = "Subscription not synced"
    elif result.changed:
        message = "Subscription synced with PayPal"
    else:
        message = "Subscription already in sync"
    return success(message, result.model_dump(mode="json", by_alias=True))


# =============================================================================
# Handlers shared by the dedicated and unified endpoints
# =============================================================================

async def _cancel(
    service: ReconciliationService,
    auth: AuthContext,
    request: Request,
    body: CancelSubscriptionRequest,
) -> JSONResponse:
    logger.info(f"Cancel requested by user {auth.user_id} (via {auth.source})")
    result = await service.cancel(
        auth.user_id,
        reason=body.reason,
        should_cancel_paypal=body.should_cancel_paypal,
        metadata=_request_metadata(request, body.metadata),
    )
    return _cancellation_response(result, "Subscription cancelled successfully")


async def _switch_to_free(
    service: ReconciliationService,
    auth: AuthContext,
    request: Request,
    body: SwitchToFreeRequest,
) -> JSONResponse:
    result = await service.switch_to_free(
        auth.user_id,
        confirm_cancellation=body.confirm_cancellation,
        reason=body.reason,
        should_cancel_paypal=body.should_cancel_paypal,
        metadata=_request_metadata(request, body.metadata),
    )
    return _cancellation_response(result, "Successfully switched to free plan")


async def _validate(service: ReconciliationService, subscription_id: Optional[str]) -> JSONResponse:
    result = await service.validate_paypal_subscription(subscription_id)
    message = "Subscription found" if result.valid else "Subscription not found"
    return success(message, result.model_dump(mode="json"), headers=NO_STORE)


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/subscription/cancel")
async def cancel_subscription(
    request: Request,
    auth: AuthDep,
    service: ReconciliationDep,
    body: Optional[CancelSubscriptionRequest] = None,
):
    """
    Cancel the current paid subscription and fall back to the free plan.

    Safe to call repeatedly: an already-free user gets ``alreadyFree: true``.
    """
    return await _cancel(service, auth, request, body or CancelSubscriptionRequest())


@router.post("/subscription/switch-to-free")
async def switch_to_free(
    request: Request,
    auth: AuthDep,
    service: ReconciliationDep,
    body: Optional[SwitchToFreeRequest] = None,
):
    """Switch to the free plan; requires ``confirmCancellation: true``."""
    return await _switch_to_free(service, auth, request, body or SwitchToFreeRequest())


@router.post("/subscription/sync")
async def sync_subscription(auth: AuthDep, service: ReconciliationDep):
    """Pull the PayPal status of the current subscription and apply it."""
    result = await service.sync_with_paypal(auth.user_id)
    return _sync_response(result)


@router.post("/subscription/validate")
async def validate_subscription(
    auth: AuthDep,
    service: ReconciliationDep,
    body: Optional[ValidateSubscriptionRequest] = None,
):
    """Check a PayPal subscription id against PayPal."""
    return await _validate(service, body.subscription_id if body else None)


@router.post("/subscription/manage")
async def manage_subscription(
    request: Request,
    auth: AuthDep,
    service: ReconciliationDep,
    body: ManageSubscriptionRequest,
):
    """
    Unified management endpoint.

    Actions: cancel, switch_to_free, sync_with_paypal, validate_paypal.
    """
    try:
        action = ManageAction(body.action)
    except ValueError:
        raise InvalidAction(
            "Invalid action",
            details={"allowed": [a.value for a in ManageAction]},
        )

    if action == ManageAction.CANCEL:
        return await _cancel(
            service,
            auth,
            request,
            CancelSubscriptionRequest(
                reason=body.reason,
                should_cancel_paypal=body.should_cancel_paypal,
                metadata=body.metadata,
            ),
        )

    if action == ManageAction.SWITCH_TO_FREE:
        return await _switch_to_free(
            service,
            auth,
            request,
            SwitchToFreeRequest(
                confirm_cancellation=body.confirm_cancellation,
                reason=body.reason,
                should_cancel_paypal=body.should_cancel_paypal,
                metadata=body.metadata,
            ),
        )

    if action == ManageAction.SYNC_WITH_PAYPAL:
        return _sync_response(await service.sync_with_paypal(auth.user_id))

    return await _validate(service, body.subscription_id)


@router.get("/subscription/info")
async def subscription_info(auth: AuthDep, service: ReconciliationDep):
    """Current plan, quotas and remaining usage."""
    info = await service.get_subscription_info(auth.user_id)
    return success("Subscription info", info.model_dump(mode="json"), headers=NO_STORE)
