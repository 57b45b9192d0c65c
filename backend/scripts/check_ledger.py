"""
Replay every product's movement history and compare it with the stored stock.

Exits non-zero when any product disagrees, so it can run as a cron/CI check:
  PYTHONPATH=backend python backend/scripts/check_ledger.py
"""

import asyncio
import sys
from typing import List

from core.config import settings
from core.logging_setup import setup_logging
from db.database import build_engine
from services.container import InventoryServices, build_services
from services.ledger import ReplayResult


async def check_all(services: InventoryServices) -> List[ReplayResult]:
    """Return the replay results that do not match the stored quantities."""
    mismatches = []
    for product in await services.catalog.list_products():
        result = await services.ledger.replay_product(product.id)
        if not result.consistent:
            mismatches.append(result)
    return mismatches


async def main() -> int:
    setup_logging(settings)
    engine = build_engine()
    try:
        mismatches = await check_all(build_services(engine, settings=settings))
    finally:
        await engine.dispose()

    for r in mismatches:
        print(
            f"{r.product_id}: stored {r.stored_aggregate} "
            f"({r.stored_by_location}), replayed {r.aggregate} ({r.by_location})"
        )
    print(f"Mismatched products: {len(mismatches)}")
    return 1 if mismatches else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
