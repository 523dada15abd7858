#!/usr/bin/env python3
"""
Seed the free / pro plan catalog.

Idempotent: existing plans are left untouched. Normally the initial
migration seeds the catalog; this is for databases built with create_all.

Run: python scripts/seed_plans.py
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sharkszone.infrastructure.db.database import get_session_context
from sharkszone.infrastructure.db.models import DEFAULT_PLANS
from sharkszone.infrastructure.db.repositories import PlanRepository


async def main():
    print("Seeding subscription plans...")

    async with get_session_context() as session:
        plans = PlanRepository(session)
        for fields in DEFAULT_PLANS:
            plan, created = await plans.ensure(**fields)
            state = "created" if created else "exists"
            print(f"  {plan.name:<5} {state:<8} checks={plan.price_check_limit} posts={plan.post_creation_limit} price={plan.price}")

    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
