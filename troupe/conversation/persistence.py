"""Append-only audit log of every prompt sent to the backend."""

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional, Protocol, runtime_checkable

import aiosqlite
from pydantic import BaseModel

from troupe.errors import PersistenceError

from .migrations import get_current_version, run_migrations


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class PromptRecord(BaseModel):
    """One dispatch attempt as written to the audit log."""

    id: Optional[int] = None
    timestamp: int
    prompt: str
    result: str
    config: str

    @classmethod
    def from_db_row(cls, row: dict) -> "PromptRecord":
        """Create a PromptRecord from a database row."""
        return cls(
            id=row["id"],
            timestamp=row["timestamp"],
            prompt=row["prompt"],
            result=row["result"],
            config=row["config"],
        )

    @property
    def is_error(self) -> bool:
        return self.result.startswith("ERROR:")


@runtime_checkable
class AuditStore(Protocol):
    """Storage collaborator the dispatcher writes prompt records to."""

    async def append_prompt_record(
        self, timestamp: int, prompt: str, result: str, config: str
    ) -> None:
        ...


class InMemoryAuditLog:
    """Audit store kept in a list, for tests and throwaway sessions."""

    def __init__(self) -> None:
        self.records: list[PromptRecord] = []

    async def append_prompt_record(
        self, timestamp: int, prompt: str, result: str, config: str
    ) -> None:
        self.records.append(
            PromptRecord(
                id=len(self.records) + 1,
                timestamp=timestamp,
                prompt=prompt,
                result=result,
                config=config,
            )
        )

    async def list_prompt_records(self, limit: int = 100, offset: int = 0) -> list[PromptRecord]:
        newest_first = list(reversed(self.records))
        return newest_first[offset:offset + limit]

    async def count_prompt_records(self) -> int:
        return len(self.records)

    async def clear(self) -> None:
        self.records.clear()


class AuditLog:
    """Async SQLite prompt log.

    Each record is written with a single INSERT and committed on its own
    connection, so concurrent writers never leave a partial record behind.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the audit log.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path).expanduser()

    async def initialize(self) -> None:
        """Create the database and run migrations if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self.connect() as conn:
            await run_migrations(conn)

    @asynccontextmanager
    async def connect(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Get a database connection as an async context manager."""
        conn = await aiosqlite.connect(self.db_path)
        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        finally:
            await conn.close()

    async def get_version(self) -> int:
        """Get the current schema version."""
        async with self.connect() as conn:
            return await get_current_version(conn)

    async def fetch_all(self, query: str, params: tuple = ()) -> list[dict]:
        """Fetch all rows as a list of dictionaries."""
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def append_prompt_record(
        self, timestamp: int, prompt: str, result: str, config: str
    ) -> None:
        """Append one prompt record.

        Raises:
            PersistenceError: If the write fails
        """
        try:
            async with self.connect() as conn:
                await conn.execute(
                    """
                    INSERT INTO prompts (timestamp, prompt, result, config)
                    VALUES (?, ?, ?, ?)
                    """,
                    (timestamp, prompt, result, config),
                )
                await conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceError("insert", "could not append prompt record", e) from e

    async def list_prompt_records(self, limit: int = 100, offset: int = 0) -> list[PromptRecord]:
        """List prompt records, most recent first."""
        rows = await self.fetch_all(
            """
            SELECT * FROM prompts
            ORDER BY timestamp DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (limit, offset),
        )
        return [PromptRecord.from_db_row(row) for row in rows]

    async def count_prompt_records(self) -> int:
        rows = await self.fetch_all("SELECT COUNT(*) AS n FROM prompts")
        return rows[0]["n"] if rows else 0

    async def clear(self) -> None:
        """Delete every prompt record."""
        async with self.connect() as conn:
            await conn.execute("DELETE FROM prompts")
            await conn.commit()
