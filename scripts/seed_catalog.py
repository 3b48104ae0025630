"""
Seed script: distinguished catalog rows and a demo assortment for local work.

What it creates:
- Treasury accounts: EFECTIVO, TARJETA, CUENTA CORRIENTE.
- Document types: FACTURA (FC-) and NOTA DE CREDITO (NC-).
- Clients: CONSUMIDOR FINAL and one client with a 5000 current-account limit.
- Articles: a simple article, a recipe-style article (milk per coffee) and a combo.
- Prints a bearer token for each role so the API can be exercised right away.

Run from the project root after `pip install -e .`:
    python scripts/seed_catalog.py --create-tables

Note: This is intended for development environments only.
"""
import argparse
from uuid import uuid4

from retail_pos.database.database import SessionLocal, Base, engine
from retail_pos.modules.auth.dependencies import create_access_token
from retail_pos.modules.auth.schemas import Role
from retail_pos.modules.catalog.seed import seed_catalog

import retail_pos.modules.catalog.models
import retail_pos.modules.inventory.models
import retail_pos.modules.tills.models
import retail_pos.modules.sales.models


def main():
    parser = argparse.ArgumentParser(description="Seed catalog data for the POS engine")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables before seeding")
    args = parser.parse_args()

    if args.create_tables:
        print("Creating tables...")
        Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        catalog = seed_catalog(db)
        db.commit()

        print("Treasury accounts:")
        for description, account in catalog.accounts.items():
            print(f"  {description:<20} {account.id}")
        print("Document types:")
        for description, document_type in catalog.document_types.items():
            print(f"  {description:<20} {document_type.id}")
        print(f"Walk-in client:  {catalog.walk_in_client.id}")
        print(f"Credit client:   {catalog.credit_client.id}")
        print("Variants:")
        for name, variant in catalog.variants.items():
            print(f"  {name:<20} {variant.id} (stock {variant.quantity})")

        print("\nDemo tokens:")
        for role in Role:
            print(f"  {role.value:<11} {create_access_token(uuid4(), role)}")
        print("\nSeed completed.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
