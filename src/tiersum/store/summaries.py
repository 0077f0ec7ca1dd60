"""Summary node persistence over the shared SQLite connection."""

from __future__ import annotations

import json
import time
from collections.abc import Sequence

import aiosqlite
import structlog

from tiersum.models.summary import MessageRange, SummaryNode
from tiersum.store.immutable import ImmutableStore


class SummaryStore:
    """
    Authoritative record of summary nodes.

    Nodes are insert-only: there is no update of content, level or lineage.
    The single mutation is the ``is_active`` flag, flipped by
    :meth:`deactivate` when an administrator supersedes folded nodes.

    Every read is scoped to ``(session_id, user_id)``. Rows owned by another
    user are never returned; they are simply absent from the result.
    """

    def __init__(self, store: ImmutableStore) -> None:
        self._store = store
        self._logger = structlog.get_logger("tiersum.summary_store")

    async def insert(self, node: SummaryNode) -> SummaryNode:
        """
        Persist a new summary node.

        The store assigns ``id`` and ``created_at``; any values on the input
        node are ignored.

        Args:
            node: The node to persist.

        Returns:
            A copy of the node carrying its assigned id and timestamp.
        """
        conn = self._store._conn_or_raise()
        created_at = int(time.time() * 1000)
        span = node.message_range
        parents = json.dumps(node.parent_summary_ids) if node.parent_summary_ids else None

        async with self._store.write_lock():
            try:
                cursor = await conn.execute(
                    """
                    INSERT INTO summary_nodes (
                        session_id, user_id, content, level, original_message_count,
                        start_message_id, end_message_id, parent_summary_ids,
                        is_active, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        node.session_id,
                        node.user_id,
                        node.content,
                        node.level,
                        node.original_message_count,
                        span.start_id if span else None,
                        span.end_id if span else None,
                        parents,
                        int(node.is_active),
                        created_at,
                    ),
                )
                await conn.commit()
            except aiosqlite.Error:
                await conn.rollback()
                raise

        stored = node.model_copy(update={"id": cursor.lastrowid, "created_at": created_at})
        self._logger.info(
            "summary_node_inserted",
            session_id=stored.session_id,
            node_id=stored.id,
            level=stored.level,
            original_message_count=stored.original_message_count,
        )
        return stored

    async def list_by_session_and_user(self, session_id: str, user_id: str) -> list[SummaryNode]:
        """
        Return every node of the session owned by *user_id*, newest first.

        Inactive nodes are included; callers filter on ``is_active``.
        """
        conn = self._store._conn_or_raise()
        async with conn.execute(
            """
            SELECT * FROM summary_nodes
            WHERE session_id = ? AND user_id = ?
            ORDER BY created_at DESC, id DESC
            """,
            (session_id, user_id),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_node(r) for r in rows]

    async def get_active_nodes(self, session_id: str, user_id: str) -> list[SummaryNode]:
        """Return the active nodes of a session in creation order (oldest first)."""
        conn = self._store._conn_or_raise()
        async with conn.execute(
            """
            SELECT * FROM summary_nodes
            WHERE session_id = ? AND user_id = ? AND is_active = 1
            ORDER BY created_at ASC, id ASC
            """,
            (session_id, user_id),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_node(r) for r in rows]

    async def get_nodes(
        self,
        node_ids: Sequence[int],
        *,
        session_id: str,
        user_id: str,
    ) -> list[SummaryNode]:
        """
        Fetch nodes by id, scoped to a session and owner.

        Ids that do not exist, or that belong to another session or user, are
        omitted. The result follows the order of *node_ids*.
        """
        if not node_ids:
            return []
        conn = self._store._conn_or_raise()
        placeholders = ",".join("?" * len(node_ids))
        async with conn.execute(
            f"SELECT * FROM summary_nodes"
            f" WHERE session_id = ? AND user_id = ? AND id IN ({placeholders})",
            (session_id, user_id, *node_ids),
        ) as cursor:
            rows = await cursor.fetchall()
        by_id = {row["id"]: self._row_to_node(row) for row in rows}
        return [by_id[nid] for nid in node_ids if nid in by_id]

    async def deactivate(
        self,
        node_ids: Sequence[int],
        *,
        session_id: str,
        user_id: str,
    ) -> int:
        """
        Mark nodes inactive so they no longer take part in context reconstruction.

        The rows are retained for audit. Nodes owned by another user are left
        untouched.

        Returns:
            The number of rows that changed.
        """
        if not node_ids:
            return 0
        conn = self._store._conn_or_raise()
        placeholders = ",".join("?" * len(node_ids))
        async with self._store.write_lock():
            cursor = await conn.execute(
                f"UPDATE summary_nodes SET is_active = 0"
                f" WHERE session_id = ? AND user_id = ? AND is_active = 1"
                f" AND id IN ({placeholders})",
                (session_id, user_id, *node_ids),
            )
            await conn.commit()
        self._logger.info(
            "summary_nodes_deactivated",
            session_id=session_id,
            node_ids=list(node_ids),
            changed=cursor.rowcount,
        )
        return cursor.rowcount

    # ── Private Helpers ────────────────────────────────────────────────────────

    def _row_to_node(self, row: aiosqlite.Row) -> SummaryNode:
        message_range = None
        if row["start_message_id"] is not None and row["end_message_id"] is not None:
            message_range = MessageRange(
                start_id=row["start_message_id"], end_id=row["end_message_id"]
            )
        parents = json.loads(row["parent_summary_ids"]) if row["parent_summary_ids"] else None
        return SummaryNode(
            id=row["id"],
            session_id=row["session_id"],
            user_id=row["user_id"],
            content=row["content"],
            level=row["level"],
            original_message_count=row["original_message_count"],
            message_range=message_range,
            parent_summary_ids=parents,
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )
