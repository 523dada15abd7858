"""
PayPal Webhook Handler

Receives PayPal webhook deliveries for subscription lifecycle management.

The delivery is verified with PayPal, recorded in ``webhook_events`` and
then dispatched. Once recorded it is always acknowledged with 200, even if
the handler fails (the event stays replayable). Verification failures are
rejected with 400/401 and nothing is stored; a recording failure answers
500 so PayPal retries.

Handled Events:
- BILLING.SUBSCRIPTION.CANCELLED / EXPIRED: downgrade to the free plan
- BILLING.SUBSCRIPTION.SUSPENDED: restrict the subscription
- BILLING.SUBSCRIPTION.ACTIVATED / RE-ACTIVATED: reactivate
- BILLING.SUBSCRIPTION.UPDATED: re-sync with PayPal
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from sharkszone.api.dependencies import WebhookServiceDep
from sharkszone.infrastructure.services.webhook_service import ALREADY_PROCESSED


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/paypal")
async def paypal_webhook(request: Request, service: WebhookServiceDep):
    """Handle one PayPal webhook delivery."""
    raw_body = await request.body()
    outcome = await service.receive(request.headers, raw_body)

    if outcome == ALREADY_PROCESSED:
        return PlainTextResponse(ALREADY_PROCESSED)
    return PlainTextResponse("OK")
