# storefront/populate_db.py
"""Seed a demo catalog with stock. Run with: python -m storefront.populate_db"""
import random
import re
from datetime import timedelta

from storefront.database import SessionLocal, init_db
from storefront.models import Inventory, Product, Variant
from storefront.utils.tokenJWT import create_access_token

# Configuration
SEED = 42
STOCK_RANGE = (0, 25)
CATALOG = [
    # title, vendor, product_type, [(variant title, option, price in cents, max per cart)]
    ("Merino Crew Sweater", "Northwind", "apparel", [
        ("Small", "Size: S", 8900, 5), ("Medium", "Size: M", 8900, 5), ("Large", "Size: L", 8900, 5),
    ]),
    ("Canvas Weekender", "Harbor Goods", "bags", [
        ("Olive", "Color: Olive", 12900, 2), ("Navy", "Color: Navy", 12900, 2),
    ]),
    ("Ceramic Pour-Over Set", "Kiln & Co", "kitchen", [
        ("White", "Glaze: White", 4500, None), ("Speckled", "Glaze: Speckled", 4900, None),
    ]),
    ("Trail Socks 3-Pack", "Northwind", "apparel", [
        ("One Size", None, 1900, 10),
    ]),
]
# End Configuration


def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def load_catalog(session) -> int:
    """Insert every catalog product with its variants and an inventory row per variant."""
    rng = random.Random(SEED)
    count = 0
    for title, vendor, product_type, variants in CATALOG:
        product = Product(title=title, slug=_slugify(title), vendor=vendor, product_type=product_type)
        for index, (variant_title, option, price_cents, max_quantity) in enumerate(variants, start=1):
            variant = Variant(
                title=variant_title,
                sku=f"{_slugify(vendor)[:4].upper()}-{_slugify(title)[:6].upper()}-{index:02d}",
                option=option,
                price_cents=price_cents,
                currency="eur",
                max_quantity=max_quantity,
                min_quantity=1,
            )
            variant.inventory = Inventory(stock_quantity=rng.randint(*STOCK_RANGE))
            product.variants.append(variant)
            count += 1
        session.add(product)
    session.commit()
    return count


def populate_database():
    """Main execution function to populate database."""
    init_db()
    session = SessionLocal()
    try:
        # Seeding only runs against an empty catalog
        if session.query(Product).count():
            print("Catalog already present, skipping seed.")
        else:
            count = load_catalog(session)
            print(f"Inserted {len(CATALOG)} products with {count} variants.")
    finally:
        session.close()

    token = create_access_token({"sub": "seed-admin", "role": "ADMIN"}, expires_delta=timedelta(days=1))
    print(f"Admin token (24h): {token}")


if __name__ == "__main__":
    populate_database()
