"""Collaborator interfaces the engine depends on.

The SQLite stores in this package satisfy both protocols; any other backend
(a relational service, an HTTP API) can be dropped in by matching them.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from tiersum.models.message import Message
from tiersum.models.summary import SummaryNode


class MessageLog(Protocol):
    async def fetch_range(self, session_id: str, start_id: int, end_id: int) -> list[Message]:
        """Messages with id in ``[start_id, end_id]``, ordered by creation time ascending."""
        ...


class SummaryRepository(Protocol):
    async def insert(self, node: SummaryNode) -> SummaryNode:
        """Persist *node*, assigning ``id`` and ``created_at``."""
        ...

    async def list_by_session_and_user(self, session_id: str, user_id: str) -> list[SummaryNode]:
        """Nodes for the session owned by the user, newest first."""
        ...

    async def get_nodes(
        self,
        node_ids: Sequence[int],
        *,
        session_id: str,
        user_id: str,
    ) -> list[SummaryNode]:
        """Scoped lookup by id; missing or foreign ids are omitted."""
        ...
