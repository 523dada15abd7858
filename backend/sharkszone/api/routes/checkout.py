"""
Checkout API Routes

Confirms a captured PayPal payment and activates the Pro plan.
"""

import logging

from fastapi import APIRouter

from sharkszone.api.dependencies import AuthDep, CheckoutDep
from sharkszone.api.responses import success
from sharkszone.domain.subscription import ConfirmCheckoutRequest


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/checkout/confirm")
async def confirm_checkout(
    body: ConfirmCheckoutRequest,
    auth: AuthDep,
    service: CheckoutDep,
):
    """
    Activate Pro after the client captured the order.

    The amount must equal the Pro price exactly; anything else is rejected
    before any write. Repeating the call for the same order is a no-op.
    """
    result = await service.confirm_checkout(
        auth.user_id,
        order_id=body.order_id,
        capture_id=body.capture_id,
        amount=body.amount,
        raw={"order_id": body.order_id, "capture_id": body.capture_id, "amount": str(body.amount)},
    )
    message = "Payment already confirmed" if result.already_confirmed else "Subscription activated"
    return success(message, result.model_dump(mode="json"))
