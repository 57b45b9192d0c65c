import asyncio
import sys
import uuid
from decimal import Decimal
from pathlib import Path

"""
Seed demo data (locations, categories, products, opening stock) into the DB.

This script can be run from either:
- backend/: `python scripts/seed_demo_data.py`
- repo root: `python backend/scripts/seed_demo_data.py`

Safe to run twice: existing rows are looked up by name/sku and opening
stock is only received for products created by this run.
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from core.config import settings
from core.logging_setup import setup_logging
from db.database import build_engine, create_db_and_tables
from db.inventory.movement import MovementType
from services.container import InventoryServices, build_services
from services.ledger import MovementRequest

# Fixed so re-runs attribute the seed to the same actor
SEED_ACTOR_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")

LOCATIONS = ["Main Warehouse", "Downtown Store"]

# name, sku, category, cost, price, reorder threshold, opening stock
PRODUCTS = [
    ("Cordless Drill", "TOOL-DRL-01", "Tools", "45.00", "89.90", 5, 40),
    ("Claw Hammer", "TOOL-HAM-01", "Tools", "6.50", "14.90", 10, 120),
    ("Wood Screws 4x40 (200)", "FAST-SCR-440", "Fasteners", "3.20", "7.50", 25, 300),
    ("Wall Plugs 6mm (100)", "FAST-PLG-06", "Fasteners", "1.10", "3.90", 25, 250),
    ("LED Work Light", "ELEC-LGT-01", "Electrical", "12.00", "29.00", 4, 18),
]

# sku -> units moved from the warehouse to the store
STORE_TRANSFERS = {
    "TOOL-DRL-01": 8,
    "TOOL-HAM-01": 30,
    "FAST-SCR-440": 60,
}


async def get_or_create_location(services: InventoryServices, name: str):
    for loc in await services.locations.list_locations(include_inactive=True):
        if loc.name == name:
            return loc
    return await services.locations.create_location(name)


async def get_or_create_category(services: InventoryServices, name: str):
    for cat in await services.catalog.list_categories():
        if cat.name == name:
            return cat
    return await services.catalog.create_category(name)


async def seed(services: InventoryServices, actor_id: uuid.UUID = SEED_ACTOR_ID) -> dict:
    warehouse, store = [await get_or_create_location(services, name) for name in LOCATIONS]

    created = []
    for name, sku, category_name, cost, price, threshold, opening in PRODUCTS:
        existing = [p for p in await services.catalog.list_products(search=sku) if p.sku == sku]
        if existing:
            continue
        category = await get_or_create_category(services, category_name)
        product = await services.catalog.create_product(
            name=name,
            sku=sku,
            cost=Decimal(cost),
            price=Decimal(price),
            reorder_threshold=threshold,
            category_id=category.id,
        )
        await services.ledger.apply_movement(
            MovementRequest(
                product_id=product.id,
                type=MovementType.IN,
                quantity=opening,
                actor_id=actor_id,
                to_location_id=warehouse.id,
                reason="Opening stock",
            )
        )
        moved = STORE_TRANSFERS.get(sku)
        if moved:
            await services.transfers.transfer_stock(product.id, warehouse.id, store.id, moved, actor_id)
        created.append(product)

    return {"locations": [warehouse, store], "created": created}


async def main() -> None:
    setup_logging(settings)
    engine = build_engine()
    await create_db_and_tables(engine)
    services = build_services(engine, settings=settings)
    try:
        result = await seed(services)
        await services.notifier.drain()
    finally:
        await engine.dispose()

    print(f"Locations: {', '.join(loc.name for loc in result['locations'])}")
    print(f"Products created: {len(result['created'])}")
    for product in result["created"]:
        print(f"  {product.sku}  {product.name}")


if __name__ == "__main__":
    asyncio.run(main())
