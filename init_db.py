"""Initialize database schema for the phenotype catalog.

Creates the phenotypes table and seeds it with the reference catalog.
Run this before starting the API server.
"""

import asyncio
import sys

from sqlalchemy import text

from config.phenotype_catalog import CATALOG_VERSION, PHENOTYPE_CATALOG
from phenomatch.catalog import catalog_from_records
from phenomatch.config import settings
from phenomatch.db import AsyncSessionMaker, engine
from phenomatch.models import Base, Phenotype


async def init_database():
    """Create all database tables."""
    print(f"Initializing database: {settings.db.url}")
    print("Creating tables...")

    async with engine.begin() as conn:
        # Enable pgvector extension
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        print("✓ Enabled pgvector extension")

        # Drop all tables (for clean start)
        await conn.run_sync(Base.metadata.drop_all)
        print("✓ Dropped existing tables")

        await conn.run_sync(Base.metadata.create_all)
        print("✓ Created all tables")

    print(f"Tables created: {', '.join(Base.metadata.tables.keys())}")


async def seed_catalog():
    """Insert the seed phenotypes."""
    # Validates the records before anything is written
    catalog = catalog_from_records(PHENOTYPE_CATALOG)

    async with AsyncSessionMaker() as session:
        for record in PHENOTYPE_CATALOG:
            session.add(Phenotype(
                id=record["id"],
                name=record["name"],
                description=record.get("description"),
                regions=record.get("regions", []),
                reference_measurements=record.get("reference_measurements"),
                reference_embedding=record.get("reference_embedding"),
                metadata_={**record.get("metadata", {}), "catalog_version": CATALOG_VERSION},
            ))
        await session.commit()

    print(f"✓ Seeded {len(catalog)} phenotypes ({CATALOG_VERSION})")


async def main():
    """Main entry point."""
    try:
        await init_database()
        await seed_catalog()
    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)

    print("\n✅ Database initialization complete!")


if __name__ == "__main__":
    asyncio.run(main())
