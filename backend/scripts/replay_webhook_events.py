#!/usr/bin/env python3
"""
Re-dispatch PayPal webhook events that were recorded but not processed.

Picks up events in status 'received' or 'failed', oldest first.

Run: python scripts/replay_webhook_events.py [--limit 100]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sharkszone.config.paypal import PayPalConfig
from sharkszone.config.settings import settings
from sharkszone.infrastructure.db.database import close_db, get_session_context
from sharkszone.infrastructure.payments import PayPalClient
from sharkszone.infrastructure.services.reconciliation_service import ReconciliationService
from sharkszone.infrastructure.services.webhook_service import WebhookService


async def main(limit: int):
    client = PayPalClient(PayPalConfig.from_settings(settings))
    print(f"Replaying up to {limit} webhook event(s) against PayPal {client.config.mode}...")

    try:
        async with get_session_context() as session:
            reconciliation = ReconciliationService(session, client)
            service = WebhookService(session, client, reconciliation)
            counts = await service.replay_pending_events(limit=limit)
    finally:
        await client.close()
        await close_db()

    print(f"Processed: {counts['processed']}  Failed: {counts['failed']}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--limit", type=int, default=100)
    args = parser.parse_args()
    asyncio.run(main(args.limit))
