"""Summary engine: leaf and merge summary generation with lineage.

One ``generate`` call is a linear flow:

1. **Authorise**: the authenticated identity must own the request.
2. **Validate**: required fields, mode-specific fields, range shape.
3. **Source**: leaf mode selects the message range, whose endpoints must both
   be messages of the session, and renders a transcript;
   merge mode checks that every parent summary exists for this owner.
4. **Compose** and **generate** the summary text.
5. **Persist** a new node with its lineage and return it.

All validation happens before the generation call. The engine holds no locks
and does not deduplicate: two calls with the same arguments produce two
independent nodes. Serialising generation per session is the job of
:class:`tiersum.service.SummaryService`.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from tiersum.errors import (
    Forbidden,
    InvalidRequest,
    NotFound,
    PersistenceFailed,
    SummaryGenerationFailed,
    TiersumError,
)
from tiersum.events.bus import EventBus, TiersumEvent
from tiersum.generation.client import GenerationClient
from tiersum.models.config import GenerationConfig, TiersumConfig
from tiersum.models.summary import (
    AuthenticatedUser,
    LeafSummaryRequest,
    MergeSummaryRequest,
    SummaryNode,
    parse_summary_request,
    request_user_id,
)
from tiersum.store.base import MessageLog, SummaryRepository
from tiersum.store.immutable import ImmutableStore
from tiersum.store.pool import StorePool
from tiersum.store.summaries import SummaryStore
from tiersum.summarize.prompts import PromptComposer, PromptSpec
from tiersum.summarize.range_selector import RangeSelector, render_transcript

LEAF_LEVEL = 1
MERGE_LEVEL = 2

RequestInput = LeafSummaryRequest | MergeSummaryRequest | Mapping[str, Any]


class SummaryEngine:
    """
    Orchestrates range selection, prompt composition, generation and persistence.

    Guarantees:
    - ``Forbidden`` is raised before any data access when the identity does not
      own the request, even if the request is otherwise malformed.
    - Every validation failure is raised before the generation call.
    - A failed generation or persistence leaves no partial node behind.

    Example::

        engine = SummaryEngine(config, messages=store, summaries=summary_store)
        node = await engine.generate(request, AuthenticatedUser(id="user_1"))
    """

    def __init__(
        self,
        config: TiersumConfig,
        *,
        messages: MessageLog,
        summaries: SummaryRepository,
        generation_client: GenerationClient | None = None,
        composer: PromptComposer | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config
        self._summaries = summaries
        self._selector = RangeSelector(messages)
        self._composer = composer or PromptComposer(config.prompts)
        self._client = generation_client or GenerationClient()
        self._event_bus = event_bus
        self._store: ImmutableStore | None = None
        self._logger = structlog.get_logger("tiersum.engine")

    @classmethod
    async def open(
        cls,
        config: TiersumConfig,
        *,
        pool: StorePool | None = None,
        generation_client: GenerationClient | None = None,
        event_bus: EventBus | None = None,
    ) -> SummaryEngine:
        """
        Build an engine over the SQLite stores described by ``config.store``.

        The returned engine owns its store; use it as an async context manager
        or call :meth:`close`.
        """
        store = ImmutableStore(config.store, pool=pool)
        await store.initialize()
        engine = cls(
            config,
            messages=store,
            summaries=SummaryStore(store),
            generation_client=generation_client,
            event_bus=event_bus,
        )
        engine._store = store
        return engine

    async def close(self) -> None:
        if self._store is not None:
            await self._store.close()
            self._store = None

    async def __aenter__(self) -> SummaryEngine:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ── Public API ─────────────────────────────────────────────────────────────

    async def generate(
        self,
        request: RequestInput,
        identity: AuthenticatedUser,
        *,
        generation: GenerationConfig | None = None,
    ) -> SummaryNode:
        """
        Generate and persist one summary node.

        Args:
            request: A parsed request, or a raw camelCase/snake_case mapping.
            identity: The authenticated caller.
            generation: Per-call credential/model override. Defaults to
                ``config.generation``.

        Returns:
            The persisted node: level 1 with ``message_range`` for ``normal``
            requests, level 2 with ``parent_summary_ids`` for ``super`` ones.

        Raises:
            Forbidden: ``identity.id`` differs from the request's user id.
            InvalidRequest: Required or mode-specific fields are missing or malformed.
            NotFound: A range endpoint is not a message of the session, or a
                parent summary is unknown.
            SummaryGenerationFailed: The generation call failed.
            PersistenceFailed: The store rejected the new node.
        """
        owner = request_user_id(request)
        if owner != identity.id:
            self._logger.warning(
                "summary_forbidden", identity=identity.id, requested_user=owner
            )
            raise Forbidden("Request user does not match the authenticated identity")

        parsed = parse_summary_request(request)
        self._publish(
            TiersumEvent.SUMMARY_REQUESTED,
            {
                "session_id": parsed.session_id,
                "user_id": parsed.user_id,
                "summary_type": parsed.summary_type,
            },
        )

        try:
            node = await self._generate_inner(parsed, generation or self._config.generation)
        except TiersumError as exc:
            self._publish(
                TiersumEvent.SUMMARY_FAILED,
                {"session_id": parsed.session_id, "kind": exc.kind, "error": str(exc)},
            )
            raise

        self._publish(TiersumEvent.SUMMARY_CREATED, node.model_dump())
        return node

    async def list_for_session(
        self, session_id: str, identity: AuthenticatedUser
    ) -> list[SummaryNode]:
        """
        Return the caller's nodes for *session_id*, newest first.

        The query is scoped to ``identity.id``; nodes owned by other users are
        never returned.
        """
        if not session_id:
            raise InvalidRequest("sessionId is required", field="sessionId")
        nodes = await self._summaries.list_by_session_and_user(session_id, identity.id)
        self._logger.debug("summaries_listed", session_id=session_id, count=len(nodes))
        return nodes

    # ── Internal implementation ────────────────────────────────────────────────

    async def _generate_inner(
        self,
        request: LeafSummaryRequest | MergeSummaryRequest,
        generation: GenerationConfig,
    ) -> SummaryNode:
        if isinstance(request, LeafSummaryRequest):
            prompt, draft = await self._prepare_leaf(request)
        else:
            prompt, draft = await self._prepare_merge(request)

        try:
            content = await self._client.generate(prompt, generation)
        except SummaryGenerationFailed:
            self._logger.warning(
                "summary_generation_failed",
                session_id=request.session_id,
                summary_type=request.summary_type,
            )
            raise

        node = SummaryNode(content=content, **draft)
        try:
            stored = await self._summaries.insert(node)
        except Exception as exc:
            self._logger.error(
                "summary_persist_failed", session_id=request.session_id, error=str(exc)
            )
            raise PersistenceFailed(f"Failed to save summary: {exc}") from exc

        self._logger.info(
            "summary_created",
            session_id=stored.session_id,
            node_id=stored.id,
            level=stored.level,
            original_message_count=stored.original_message_count,
        )
        return stored

    async def _prepare_leaf(
        self, request: LeafSummaryRequest
    ) -> tuple[PromptSpec, dict[str, Any]]:
        messages = await self._selector.select(
            request.session_id, request.start_message_id, request.end_message_id
        )
        present = {msg.id for msg in messages}
        for field_name, endpoint in (
            ("startMessageId", request.start_message_id),
            ("endMessageId", request.end_message_id),
        ):
            if endpoint not in present:
                self._logger.warning(
                    "range_endpoint_missing",
                    session_id=request.session_id,
                    field=field_name,
                    message_id=endpoint,
                )
                raise NotFound(
                    f"{field_name} {endpoint} is not a message in session {request.session_id!r}"
                )

        transcript = render_transcript(
            messages, request.character_name, user_label=self._composer.user_label
        )
        prompt = self._composer.compose_leaf(transcript, request.character_name)
        draft = {
            "session_id": request.session_id,
            "user_id": request.user_id,
            "level": LEAF_LEVEL,
            "original_message_count": len(messages),
            "message_range": request.message_range,
        }
        return prompt, draft

    async def _prepare_merge(
        self, request: MergeSummaryRequest
    ) -> tuple[PromptSpec, dict[str, Any]]:
        parent_ids = list(request.parent_summary_ids)
        parents = await self._summaries.get_nodes(
            parent_ids, session_id=request.session_id, user_id=request.user_id
        )
        found = {node.id for node in parents}
        missing = [pid for pid in parent_ids if pid not in found]
        if missing:
            self._logger.warning(
                "parent_summaries_missing", session_id=request.session_id, missing=missing
            )
            raise NotFound(f"Parent summaries not found in this session: {missing}")

        prompt = self._composer.compose_merge(request.summary_content)
        draft = {
            "session_id": request.session_id,
            "user_id": request.user_id,
            "level": MERGE_LEVEL,
            "original_message_count": len(parent_ids),
            "parent_summary_ids": parent_ids,
        }
        return prompt, draft

    def _publish(self, event: TiersumEvent, payload: dict[str, Any]) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event, payload)
