"""
Create any missing tables and indexes from the model metadata.

Run before seeding:
  python -m academy.db.schema_check

Existing tables are left untouched (checkfirst); column changes need a migration.
"""
import asyncio
import logging
from typing import List

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

import academy.auth.models  # noqa: F401  registers users on Base.metadata
import academy.core.models  # noqa: F401
from academy.core.config import settings
from academy.db.session import Base, engine

logger = logging.getLogger(__name__)


async def missing_tables(db_engine: AsyncEngine) -> List[str]:
    async with db_engine.connect() as conn:
        existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
    return [name for name in Base.metadata.tables if name not in existing]


async def ensure_schema(db_engine: AsyncEngine) -> List[str]:
    """Create missing tables. Returns the names that were created."""
    missing = await missing_tables(db_engine)
    async with db_engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            # Budget window exclusion constraint compares uuid/varchar with gist
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS btree_gist"))
        await conn.run_sync(Base.metadata.create_all)
    for name in missing:
        logger.info("Created table %s", name)
    if not missing:
        logger.info("All %s tables present", len(Base.metadata.tables))
    return missing


async def main() -> None:
    try:
        await ensure_schema(engine)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(main())
