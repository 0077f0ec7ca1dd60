"""Caller-facing summary service: authentication and per-session serialisation."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any, Protocol

import structlog

from tiersum.errors import Unauthenticated
from tiersum.events.bus import EventBus, TiersumEvent
from tiersum.models.config import GenerationConfig
from tiersum.models.summary import AuthenticatedUser, SummaryNode, request_user_id
from tiersum.store.summaries import SummaryStore
from tiersum.summarize.engine import RequestInput, SummaryEngine


class Authenticator(Protocol):
    """Resolves a bearer credential to an identity."""

    async def authenticate(self, token: str) -> AuthenticatedUser:
        """Raise :class:`~tiersum.errors.Unauthenticated` for a bad credential."""
        ...


def _request_session_id(request: Any) -> str | None:
    if isinstance(request, Mapping):
        value = request.get("sessionId", request.get("session_id"))
        return str(value).strip() if value is not None else None
    return getattr(request, "session_id", None)


class SummaryService:
    """
    The ``GenerateSummary`` / ``ListSummaries`` surface over a :class:`SummaryEngine`.

    At most one generation runs per session at a time; concurrent callers for
    the same session wait their turn. Different sessions proceed in parallel.

    Args:
        engine: The summary engine doing the work.
        authenticator: Resolves bearer tokens to identities.
        summaries: Summary store, required only for :meth:`deactivate_summaries`.
        event_bus: Receives ``SUMMARIES_DEACTIVATED``.
    """

    def __init__(
        self,
        engine: SummaryEngine,
        authenticator: Authenticator,
        *,
        summaries: SummaryStore | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._engine = engine
        self._authenticator = authenticator
        self._summaries = summaries
        self._event_bus = event_bus
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: dict[str, int] = {}
        self._logger = structlog.get_logger("tiersum.service")

    async def generate_summary(
        self,
        bearer_token: str | None,
        request: RequestInput,
        *,
        generation: GenerationConfig | None = None,
    ) -> SummaryNode:
        """Authenticate, then generate one summary under the session's lock."""
        identity = await self._authenticate(bearer_token)
        session_id = _request_session_id(request)
        if not session_id or request_user_id(request) != identity.id:
            # The engine rejects the request without touching data; no lock to take.
            return await self._engine.generate(request, identity, generation=generation)

        async with self._session_lock(session_id):
            return await self._engine.generate(request, identity, generation=generation)

    async def list_summaries(self, bearer_token: str | None, session_id: str) -> list[SummaryNode]:
        """Authenticate, then list the caller's nodes for *session_id*, newest first."""
        identity = await self._authenticate(bearer_token)
        return await self._engine.list_for_session(session_id, identity)

    async def deactivate_summaries(
        self,
        bearer_token: str | None,
        session_id: str,
        node_ids: Sequence[int],
    ) -> int:
        """
        Mark the caller's nodes inactive, typically after folding them into a merge node.

        Nodes owned by other users are left untouched.

        Returns:
            The number of nodes that changed.
        """
        identity = await self._authenticate(bearer_token)
        if self._summaries is None:
            raise RuntimeError("SummaryService was built without a summary store")
        changed = await self._summaries.deactivate(
            node_ids, session_id=session_id, user_id=identity.id
        )
        if changed and self._event_bus is not None:
            self._event_bus.publish(
                TiersumEvent.SUMMARIES_DEACTIVATED,
                {"session_id": session_id, "node_ids": list(node_ids)},
            )
        return changed

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session's lock. The entry is dropped once no caller holds or awaits it."""
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = self._session_locks[session_id] = asyncio.Lock()
        elif lock.locked():
            self._logger.debug("summary_generation_queued", session_id=session_id)
        self._lock_holders[session_id] = self._lock_holders.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[session_id] -= 1
            if not self._lock_holders[session_id]:
                del self._lock_holders[session_id]
                del self._session_locks[session_id]

    async def _authenticate(self, bearer_token: str | None) -> AuthenticatedUser:
        if not bearer_token:
            self._logger.warning("missing_credential")
            raise Unauthenticated("Missing bearer credential")
        return await self._authenticator.authenticate(bearer_token)
