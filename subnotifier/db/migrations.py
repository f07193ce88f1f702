"""Database migration runner.

The schema version lives in SQLite's ``user_version`` pragma. Version 1 is
the whole of ``schema.sql``; later versions append to ``MIGRATIONS``.
"""

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

# version -> SQL script bringing the database from version - 1
MIGRATIONS: dict[int, str] = {}


async def get_schema_version(db: aiosqlite.Connection) -> int:
    async with db.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
        return row[0] if row else 0


async def run_migrations(db_path: Path) -> None:
    """Create or upgrade the database at ``db_path``."""
    async with aiosqlite.connect(db_path) as db:
        version = await get_schema_version(db)

        if version == 0:
            with open(SCHEMA_PATH) as f:
                await db.executescript(f.read())
            version = 1
            await db.execute(f"PRAGMA user_version = {version}")
            await db.commit()
            logger.info(f"Database initialized at {db_path}")

        for target in sorted(v for v in MIGRATIONS if v > version):
            await db.executescript(MIGRATIONS[target])
            await db.execute(f"PRAGMA user_version = {target}")
            await db.commit()
            version = target
            logger.info(f"Database migrated to version {target}")
