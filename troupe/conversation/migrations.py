"""Database schema migrations for the prompt audit log."""

from typing import Any, Callable, Coroutine

import aiosqlite

# Type alias for migration functions
MigrationFunc = Callable[[aiosqlite.Connection], Coroutine[Any, Any, None]]

# Migration registry: version -> migration function
MIGRATIONS: dict[int, MigrationFunc] = {}


def migration(version: int) -> Callable[[MigrationFunc], MigrationFunc]:
    """Decorator to register a migration function."""

    def decorator(func: MigrationFunc) -> MigrationFunc:
        MIGRATIONS[version] = func
        return func

    return decorator


async def get_current_version(conn: aiosqlite.Connection) -> int:
    """Get the current schema version from the database."""
    cursor = await conn.execute(
        """
        SELECT name FROM sqlite_master
        WHERE type='table' AND name='schema_version'
        """
    )
    if await cursor.fetchone() is None:
        return 0

    cursor = await conn.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
    row = await cursor.fetchone()
    return row[0] if row else 0


async def run_migrations(conn: aiosqlite.Connection) -> None:
    """Run all pending migrations, each in its own commit."""
    current_version = await get_current_version(conn)

    for version in sorted(v for v in MIGRATIONS if v > current_version):
        await MIGRATIONS[version](conn)
        await conn.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, CURRENT_TIMESTAMP)",
            (version,),
        )
        await conn.commit()


# ============================================================================
# Migration Definitions
# ============================================================================


@migration(1)
async def migration_001_prompt_log(conn: aiosqlite.Connection) -> None:
    """Create the schema version table and the prompt log."""
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    # Timestamps are milliseconds since the epoch; they are not unique
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS prompts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp INTEGER NOT NULL,
            prompt TEXT NOT NULL,
            result TEXT NOT NULL,
            config TEXT NOT NULL
        )
        """
    )
    await conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_prompts_timestamp ON prompts(timestamp)"
    )
