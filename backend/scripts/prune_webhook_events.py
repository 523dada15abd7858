#!/usr/bin/env python3
"""
Delete processed webhook events older than the retention window.

Failed and unprocessed events are kept for replay.

Run: python scripts/prune_webhook_events.py [--days 30]
"""

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sharkszone.config.settings import settings
from sharkszone.infrastructure.db.database import close_db, get_session_context
from sharkszone.infrastructure.db.models import utcnow
from sharkszone.infrastructure.db.repositories import WebhookEventRepository


async def main(days: int):
    cutoff = utcnow() - timedelta(days=days)
    print(f"Pruning processed webhook events received before {cutoff.isoformat()}...")

    try:
        async with get_session_context() as session:
            deleted = await WebhookEventRepository(session).prune_processed(cutoff)
    finally:
        await close_db()

    print(f"Deleted {deleted} event(s).")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--days", type=int, default=settings.webhook_event_retention_days)
    args = parser.parse_args()
    asyncio.run(main(args.days))
