"""Append-only SQLite-backed message log."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from tiersum.models.config import StoreConfig
from tiersum.models.message import Message, Role
from tiersum.store.pool import open_connection

if TYPE_CHECKING:
    from tiersum.store.pool import StorePool

# ── Exceptions ─────────────────────────────────────────────────────────────────


class TiersumStoreError(Exception):
    """Base class for store errors."""


class StoreNotInitializedError(TiersumStoreError):
    """Raised when a store method is called before ``initialize()``."""

    def __init__(self) -> None:
        super().__init__("Store is not initialized. Call initialize() first.")


class MessageNotFoundError(TiersumStoreError):
    """Raised when a message id does not exist in the store."""

    def __init__(self, message_id: int) -> None:
        super().__init__(f"Message not found: {message_id!r}")
        self.message_id = message_id


class DuplicateIDError(TiersumStoreError):
    """Raised when attempting to insert a record with a duplicate primary key."""

    def __init__(self, record_id: int) -> None:
        super().__init__(f"Duplicate ID: {record_id!r}")
        self.record_id = record_id


# ── ImmutableStore ─────────────────────────────────────────────────────────────


class ImmutableStore:
    """
    Append-only, SQLite-backed message log.

    Owns the database connection that :class:`~tiersum.store.summaries.SummaryStore`
    also writes through. Messages are never updated or deleted here.

    When a ``StorePool`` is supplied the store borrows a shared connection
    from it and ``close()`` leaves the connection open (the pool owns its
    lifetime).

    Usage::

        store = ImmutableStore(StoreConfig())
        await store.initialize()
        try:
            msg = await store.append_message("sess_1", "user", "Hello!")
            history = await store.fetch_range("sess_1", msg.id, msg.id)
        finally:
            await store.close()
    """

    def __init__(self, config: StoreConfig, pool: StorePool | None = None) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._pool = pool
        self._conn: aiosqlite.Connection | None = None
        self._private_lock = asyncio.Lock()
        self._logger = structlog.get_logger("tiersum.store")

    async def initialize(self) -> None:
        """
        Open (or borrow) a database connection and apply the schema.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        if self._pool is not None:
            conn = await self._pool.acquire(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
        else:
            conn = await open_connection(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )

        schema = (Path(__file__).parent / "schema.sql").read_text()
        await conn.executescript(schema)
        await conn.commit()

        self._conn = conn
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """Release the connection. A no-op for pool-managed connections."""
        if self._conn is None:
            return
        if self._pool is None:
            await self._conn.close()
        self._conn = None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreNotInitializedError()
        return self._conn

    def write_lock(self) -> asyncio.Lock:
        """Return the lock serialising write transactions on this database."""
        if self._pool is not None:
            return self._pool.write_lock(self._db_path)
        return self._private_lock

    # ── Message Methods ────────────────────────────────────────────────────────

    async def append_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        *,
        message_id: int | None = None,
        created_at: int | None = None,
    ) -> Message:
        """
        Append a message to a session's log.

        Args:
            session_id: The owning conversation session.
            role: ``"user"``, ``"assistant"`` or ``"system"``.
            content: Message text.
            message_id: Explicit id, for importing an existing transcript.
                Assigned by SQLite when omitted.
            created_at: Unix ms timestamp. Defaults to now.

        Returns:
            The stored message with its assigned id.

        Raises:
            DuplicateIDError: If ``message_id`` is already taken.
        """
        conn = self._conn_or_raise()
        created = created_at if created_at is not None else int(time.time() * 1000)
        async with self.write_lock():
            try:
                cursor = await conn.execute(
                    "INSERT INTO messages (id, session_id, role, content, created_at)"
                    " VALUES (?, ?, ?, ?, ?)",
                    (message_id, session_id, role, content, created),
                )
                await conn.commit()
            except aiosqlite.IntegrityError as exc:
                await conn.rollback()
                raise DuplicateIDError(message_id if message_id is not None else -1) from exc

        assigned = message_id if message_id is not None else cursor.lastrowid
        return Message(
            id=int(assigned),
            session_id=session_id,
            role=role,
            content=content,
            created_at=created,
        )

    async def get_message(self, message_id: int) -> Message:
        """
        Fetch a single message by id.

        Raises:
            MessageNotFoundError: If no message with this id exists.
        """
        conn = self._conn_or_raise()
        async with conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise MessageNotFoundError(message_id)
        return self._row_to_message(row)

    async def fetch_range(self, session_id: str, start_id: int, end_id: int) -> list[Message]:
        """
        Return the session's messages whose id lies in ``[start_id, end_id]``.

        Returns:
            Messages ordered by ``created_at`` ascending, ties broken by id.
        """
        conn = self._conn_or_raise()
        async with conn.execute(
            """
            SELECT * FROM messages
            WHERE session_id = ? AND id >= ? AND id <= ?
            ORDER BY created_at ASC, id ASC
            """,
            (session_id, start_id, end_id),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_message(r) for r in rows]

    async def get_messages(self, session_id: str) -> list[Message]:
        """Fetch every message of a session in chronological order."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM messages WHERE session_id = ? ORDER BY created_at ASC, id ASC",
            (session_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_message(r) for r in rows]

    # ── Private Helpers ────────────────────────────────────────────────────────

    def _row_to_message(self, row: aiosqlite.Row) -> Message:
        return Message(
            id=row["id"],
            session_id=row["session_id"],
            role=row["role"],
            content=row["content"],
            created_at=row["created_at"],
        )
