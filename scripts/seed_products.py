#!/usr/bin/env python3
"""
Seed the catalog with sample products.

Usage:
    python scripts/seed_products.py           # only seeds an empty catalog
    python scripts/seed_products.py --force   # wipes products first
"""
import argparse
import asyncio
from decimal import Decimal

from shared.logging_config import setup_logging
from shared.utils import get_db_client, settings
from storefront.models import ProductDB
from storefront.repositories import ProductRepository

logger = setup_logging("storefront-seed", settings.LOG_LEVEL)

SAMPLE_PRODUCTS = [
    {"name": "Wireless Headphones", "description": "Over-ear, noise cancelling", "price": Decimal("2999.00"), "category": "electronics", "stock": 25},
    {"name": "Mechanical Keyboard", "description": "Tenkeyless, brown switches", "price": Decimal("4599.50"), "category": "electronics", "stock": 12},
    {"name": "Cotton T-Shirt", "description": "Crew neck, 100% cotton", "price": Decimal("499.00"), "category": "clothing", "stock": 100},
    {"name": "Running Shoes", "description": "Lightweight trail runners", "price": Decimal("3499.99"), "category": "footwear", "stock": 30},
    {"name": "Steel Water Bottle", "description": "1 litre, insulated", "price": Decimal("799.00"), "category": "home", "stock": 60},
    {"name": "Desk Lamp", "description": "LED, adjustable arm", "price": Decimal("1299.00"), "category": "home", "stock": 0},
]

async def seed(force: bool) -> int:
    client = get_db_client()
    try:
        db = client[settings.MONGO_DB]
        if force:
            await db.products.delete_many({})
        elif await db.products.count_documents({}) > 0:
            logger.info("Catalog already seeded, skipping")
            return 0

        inserted = await ProductRepository(db).insert_many([ProductDB(**p) for p in SAMPLE_PRODUCTS])
        logger.info(f"Seeded {inserted} products into {settings.MONGO_DB}")
        return inserted
    finally:
        client.close()

def main():
    parser = argparse.ArgumentParser(description="Seed storefront products")
    parser.add_argument("--force", action="store_true", help="Delete existing products before seeding")
    args = parser.parse_args()
    asyncio.run(seed(args.force))

if __name__ == "__main__":
    main()
