"""Tests for SummaryEngine: leaf and merge generation, authorisation, failures."""

from __future__ import annotations

import aiosqlite
import pytest
import pytest_asyncio

from tiersum.errors import (
    Forbidden,
    GenerationFailed,
    GenerationUnavailable,
    InvalidRequest,
    NotFound,
    PersistenceFailed,
)
from tiersum.events.bus import TiersumEvent
from tiersum.generation.client import FALLBACK_SUMMARY_TEXT, GenerationClient
from tiersum.models.config import GenerationConfig, StoreConfig, TiersumConfig
from tiersum.models.summary import AuthenticatedUser, MessageRange, parse_summary_request
from tiersum.store.immutable import ImmutableStore
from tiersum.store.pool import StorePool
from tiersum.summarize.engine import SummaryEngine
from tests.conftest import FakeCompletion, UpstreamError, leaf_request, merge_request

USER = AuthenticatedUser(id="user_1")


class FailingSummaryStore:
    """Delegates reads to a real store but refuses every insert."""

    def __init__(self, inner, error: Exception):
        self._inner = inner
        self._error = error

    async def insert(self, node):
        raise self._error

    async def list_by_session_and_user(self, session_id, user_id):
        return await self._inner.list_by_session_and_user(session_id, user_id)

    async def get_nodes(self, node_ids, *, session_id, user_id):
        return await self._inner.get_nodes(node_ids, session_id=session_id, user_id=user_id)


class TestLeafSummary:
    async def test_leaf_over_range(self, engine, seeded, completion):
        """A normal request over [10, 15] produces a level-1 node covering six messages."""
        node = await engine.generate(leaf_request(), USER)
        assert node.id is not None
        assert node.level == 1
        assert node.message_range == MessageRange(start_id=10, end_id=15)
        assert node.original_message_count == 6
        assert node.parent_summary_ids is None
        assert node.is_active is True
        assert node.content == "generated summary"
        assert node.session_id == "sess_1"
        assert node.user_id == "user_1"
        assert len(completion.calls) == 1

    async def test_transcript_in_prompt(self, engine, seeded, completion):
        await engine.generate(leaf_request(), USER)
        prompt = completion.last_prompt
        assert "User: line 10\nAlice: line 11" in prompt
        assert "Alice: line 15" in prompt

    async def test_count_reflects_gaps(self, engine, store, completion):
        """original_message_count is the number of messages found, not the id span."""
        for mid in (10, 12, 15):
            await store.append_message("sess_1", "user", f"m{mid}", message_id=mid)
        node = await engine.generate(leaf_request(), USER)
        assert node.original_message_count == 3
        assert node.message_range == MessageRange(start_id=10, end_id=15)

    async def test_range_endpoints_must_exist(self, engine, seeded, completion, summary_store):
        """A range wider than the stored messages is rejected before generation."""
        with pytest.raises(NotFound, match="startMessageId"):
            await engine.generate(leaf_request(startMessageId=1, endMessageId=10_000), USER)
        assert completion.calls == []
        assert await summary_store.list_by_session_and_user("sess_1", "user_1") == []

    @pytest.mark.parametrize(
        ("start", "end", "field"),
        [(9, 15, "startMessageId"), (10, 16, "endMessageId")],
    )
    async def test_missing_endpoint_named(self, engine, seeded, completion, start, end, field):
        with pytest.raises(NotFound, match=field):
            await engine.generate(leaf_request(startMessageId=start, endMessageId=end), USER)
        assert completion.calls == []

    async def test_endpoint_in_other_session_rejected(self, engine, store, seeded, completion):
        """An endpoint id that belongs to another session does not count."""
        await store.append_message("sess_2", "user", "elsewhere", message_id=16)
        with pytest.raises(NotFound, match="endMessageId"):
            await engine.generate(leaf_request(endMessageId=16), USER)
        assert completion.calls == []

    async def test_single_message_range(self, engine, seeded):
        node = await engine.generate(leaf_request(startMessageId=12, endMessageId=12), USER)
        assert node.original_message_count == 1

    async def test_parsed_request_accepted(self, engine, seeded):
        node = await engine.generate(parse_summary_request(leaf_request()), USER)
        assert node.level == 1

    async def test_empty_range_not_found(self, engine, seeded, completion, summary_store):
        """No messages in range: NotFound, no generation call, nothing persisted."""
        with pytest.raises(NotFound):
            await engine.generate(leaf_request(startMessageId=100, endMessageId=200), USER)
        assert completion.calls == []
        assert await summary_store.list_by_session_and_user("sess_1", "user_1") == []

    async def test_fallback_text_is_persisted(self, config, store, summary_store, seeded):
        engine = SummaryEngine(
            config,
            messages=store,
            summaries=summary_store,
            generation_client=GenerationClient(FakeCompletion(content="")),
        )
        node = await engine.generate(leaf_request(), USER)
        assert node.content == FALLBACK_SUMMARY_TEXT
        assert node.id is not None


class TestMergeSummary:
    async def test_merge_two_leaves(self, engine, seeded, completion):
        """Two leaves folded into a level-2 node carrying both parent ids."""
        first = await engine.generate(leaf_request(endMessageId=12), USER)
        second = await engine.generate(leaf_request(startMessageId=13), USER)
        merged = await engine.generate(merge_request([first.id, second.id]), USER)
        assert merged.level == 2
        assert merged.parent_summary_ids == [first.id, second.id]
        assert merged.message_range is None
        assert merged.original_message_count == 2
        assert "first part\nsecond part" in completion.last_prompt

    async def test_merge_ignores_range_fields(self, engine, seeded):
        leaf = await engine.generate(leaf_request(), USER)
        merged = await engine.generate(
            merge_request([leaf.id], startMessageId=1, endMessageId=2), USER
        )
        assert merged.message_range is None
        assert merged.parent_summary_ids == [leaf.id]

    async def test_missing_content_invalid(self, engine, seeded, completion):
        payload = merge_request([1])
        del payload["summaryContent"]
        with pytest.raises(InvalidRequest) as exc_info:
            await engine.generate(payload, USER)
        assert exc_info.value.field == "summaryContent"
        assert completion.calls == []

    async def test_unknown_parent_not_found(self, engine, seeded, completion):
        with pytest.raises(NotFound):
            await engine.generate(merge_request([9_999]), USER)
        assert completion.calls == []

    async def test_foreign_parent_not_found(self, engine, seeded, completion, summary_store):
        """A parent owned by another user is treated as missing."""
        other = AuthenticatedUser(id="user_2")
        foreign = await engine.generate(leaf_request(userId="user_2"), other)
        with pytest.raises(NotFound):
            await engine.generate(merge_request([foreign.id]), USER)
        assert len(completion.calls) == 1
        assert await summary_store.list_by_session_and_user("sess_1", "user_1") == []

    async def test_parent_from_other_session_not_found(self, engine, store, completion):
        await store.append_message("sess_2", "user", "hello", message_id=1)
        leaf = await engine.generate(
            leaf_request(sessionId="sess_2", startMessageId=1, endMessageId=1), USER
        )
        with pytest.raises(NotFound):
            await engine.generate(merge_request([leaf.id]), USER)


class TestAuthorisation:
    async def test_user_mismatch_forbidden(self, engine, seeded, completion, summary_store):
        """userId other than the identity: Forbidden, no writes, no generation."""
        with pytest.raises(Forbidden):
            await engine.generate(leaf_request(userId="user_2"), USER)
        assert completion.calls == []
        assert await summary_store.list_by_session_and_user("sess_1", "user_2") == []

    async def test_forbidden_precedes_validation(self, engine, completion):
        """A malformed request from the wrong user is still Forbidden."""
        with pytest.raises(Forbidden):
            await engine.generate({"userId": "intruder", "summaryType": "mega"}, USER)

    async def test_missing_user_id_forbidden(self, engine):
        payload = leaf_request()
        del payload["userId"]
        with pytest.raises(Forbidden):
            await engine.generate(payload, USER)


class TestValidation:
    @pytest.mark.parametrize("field", ["sessionId", "characterName"])
    async def test_missing_common_field(self, engine, seeded, completion, field):
        payload = leaf_request()
        del payload[field]
        with pytest.raises(InvalidRequest) as exc_info:
            await engine.generate(payload, USER)
        assert exc_info.value.field == field
        assert completion.calls == []

    @pytest.mark.parametrize("field", ["startMessageId", "endMessageId"])
    async def test_missing_range_field(self, engine, seeded, completion, field):
        payload = leaf_request()
        del payload[field]
        with pytest.raises(InvalidRequest):
            await engine.generate(payload, USER)
        assert completion.calls == []

    async def test_inverted_range(self, engine, seeded, completion):
        with pytest.raises(InvalidRequest):
            await engine.generate(leaf_request(startMessageId=15, endMessageId=10), USER)
        assert completion.calls == []


class TestGenerationFailures:
    async def test_upstream_error_nothing_persisted(self, config, store, summary_store, seeded):
        """An upstream 500 surfaces as GenerationFailed and leaves the store untouched."""
        engine = SummaryEngine(
            config,
            messages=store,
            summaries=summary_store,
            generation_client=GenerationClient(
                FakeCompletion(error=UpstreamError(500, "internal error"))
            ),
        )
        with pytest.raises(GenerationFailed) as exc_info:
            await engine.generate(leaf_request(), USER)
        assert exc_info.value.status == 500
        assert await summary_store.list_by_session_and_user("sess_1", "user_1") == []

    async def test_unavailable_nothing_persisted(self, config, store, summary_store, seeded):
        engine = SummaryEngine(
            config,
            messages=store,
            summaries=summary_store,
            generation_client=GenerationClient(
                FakeCompletion(error=ConnectionError("refused"))
            ),
        )
        with pytest.raises(GenerationUnavailable):
            await engine.generate(leaf_request(), USER)
        assert await summary_store.list_by_session_and_user("sess_1", "user_1") == []

    async def test_per_call_generation_override(self, engine, seeded, completion):
        override = GenerationConfig(api_key="sk-override", model="gpt-4o-mini")
        await engine.generate(leaf_request(), USER, generation=override)
        assert completion.calls[-1]["api_key"] == "sk-override"
        assert completion.calls[-1]["model"] == "openai/gpt-4o-mini"

    @pytest.mark.parametrize(
        "error",
        [aiosqlite.OperationalError("disk I/O error"), RuntimeError("backend down")],
        ids=["sqlite", "other-backend"],
    )
    async def test_persistence_failure(
        self, config, store, summary_store, seeded, completion, event_bus, error
    ):
        """Any repository error on insert surfaces as PersistenceFailed, chained to the cause."""
        engine = SummaryEngine(
            config,
            messages=store,
            summaries=FailingSummaryStore(summary_store, error),
            generation_client=GenerationClient(completion),
            event_bus=event_bus,
        )
        with pytest.raises(PersistenceFailed) as exc_info:
            await engine.generate(leaf_request(), USER)
        assert exc_info.value.__cause__ is error
        assert len(completion.calls) == 1
        event, payload = event_bus.collected[-1]
        assert event == TiersumEvent.SUMMARY_FAILED
        assert payload["kind"] == "persistence_failed"


class TestEvents:
    async def test_created_event(self, engine, seeded, event_bus):
        node = await engine.generate(leaf_request(), USER)
        events = [e for e, _ in event_bus.collected]
        assert events == [TiersumEvent.SUMMARY_REQUESTED, TiersumEvent.SUMMARY_CREATED]
        created = event_bus.collected[-1][1]
        assert created["id"] == node.id
        assert created["level"] == 1

    async def test_failed_event(self, engine, seeded, event_bus):
        with pytest.raises(NotFound):
            await engine.generate(leaf_request(startMessageId=100, endMessageId=101), USER)
        event, payload = event_bus.collected[-1]
        assert event == TiersumEvent.SUMMARY_FAILED
        assert payload["kind"] == "not_found"

    async def test_forbidden_publishes_nothing(self, engine, event_bus):
        with pytest.raises(Forbidden):
            await engine.generate(leaf_request(userId="user_2"), USER)
        assert event_bus.collected == []


class TestListForSession:
    async def test_newest_first(self, engine, seeded):
        first = await engine.generate(leaf_request(endMessageId=12), USER)
        second = await engine.generate(leaf_request(startMessageId=13), USER)
        merged = await engine.generate(merge_request([first.id, second.id]), USER)
        nodes = await engine.list_for_session("sess_1", USER)
        assert [n.id for n in nodes] == [merged.id, second.id, first.id]

    async def test_scoped_to_identity(self, engine, seeded):
        """Nodes of another user in the same session are never returned."""
        await engine.generate(leaf_request(), USER)
        other = AuthenticatedUser(id="user_2")
        await engine.generate(leaf_request(userId="user_2"), other)
        mine = await engine.list_for_session("sess_1", USER)
        assert len(mine) == 1
        assert all(n.user_id == "user_1" for n in mine)

    async def test_empty_session(self, engine):
        assert await engine.list_for_session("sess_none", USER) == []

    async def test_duplicates_allowed(self, engine, seeded):
        """Identical requests produce independent nodes."""
        a = await engine.generate(leaf_request(), USER)
        b = await engine.generate(leaf_request(), USER)
        assert a.id != b.id
        assert len(await engine.list_for_session("sess_1", USER)) == 2


class TestOpen:
    async def test_open_and_close(self, seeded_path_config):
        async with await SummaryEngine.open(
            seeded_path_config,
            generation_client=GenerationClient(FakeCompletion(content="opened")),
        ) as engine:
            node = await engine.generate(leaf_request(startMessageId=1, endMessageId=1), USER)
            assert node.content == "opened"

    async def test_open_with_pool(self, config, store):
        await store.append_message("sess_1", "user", "hi", message_id=1)
        pool = StorePool()
        try:
            engine = await SummaryEngine.open(
                config,
                pool=pool,
                generation_client=GenerationClient(FakeCompletion()),
            )
            node = await engine.generate(leaf_request(startMessageId=1, endMessageId=1), USER)
            assert node.original_message_count == 1
            await engine.close()
        finally:
            await pool.close_all()


@pytest_asyncio.fixture
async def seeded_path_config(tmp_path):
    """A config whose database already holds message 1 of ``sess_1``."""
    store_config = StoreConfig(db_path=str(tmp_path / "open.db"))
    seed = ImmutableStore(store_config)
    await seed.initialize()
    await seed.append_message("sess_1", "user", "hi", message_id=1)
    await seed.close()
    return TiersumConfig(generation=GenerationConfig(api_key="sk-test"), store=store_config)
