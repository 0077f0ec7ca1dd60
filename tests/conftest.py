"""Shared fixtures for tiersum tests."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio

from tiersum.events.bus import EventBus, TiersumEvent
from tiersum.generation.client import GenerationClient
from tiersum.models.config import GenerationConfig, StoreConfig, TiersumConfig
from tiersum.store.immutable import ImmutableStore
from tiersum.store.pool import StorePool
from tiersum.store.summaries import SummaryStore
from tiersum.summarize.engine import SummaryEngine


def make_completion_response(content: Any) -> SimpleNamespace:
    """Build an object shaped like a litellm ``ModelResponse``."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeCompletion:
    """
    Stand-in for ``litellm.acompletion``.

    Records every call's keyword arguments. Returns ``content`` wrapped in a
    response object, or raises ``error`` when one is set.
    """

    def __init__(self, content: Any = "generated summary", error: BaseException | None = None):
        self.content = content
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return make_completion_response(self.content)

    @property
    def last_prompt(self) -> str:
        return self.calls[-1]["messages"][-1]["content"]


class UpstreamError(Exception):
    """An upstream failure carrying an HTTP status, like litellm's API errors."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


@pytest.fixture
def config(tmp_path):
    """TiersumConfig with a temp database path and a dummy credential."""
    return TiersumConfig(
        generation=GenerationConfig(api_key="sk-test"),
        store=StoreConfig(db_path=str(tmp_path / "test.db")),
    )


@pytest_asyncio.fixture
async def pool(config):
    """StorePool for the test database. Closed after each test."""
    p = StorePool()
    yield p
    await p.close_all()


@pytest_asyncio.fixture
async def store(config, pool):
    """Initialized ImmutableStore backed by a temp SQLite database (pool-managed)."""
    s = ImmutableStore(config.store, pool=pool)
    await s.initialize()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def summary_store(store):
    """SummaryStore backed by the test store."""
    return SummaryStore(store)


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[TiersumEvent, dict[str, Any]]] = []

    def _collect(event: TiersumEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def completion():
    """FakeCompletion returning a fixed summary text."""
    return FakeCompletion()


@pytest.fixture
def engine(config, store, summary_store, completion, event_bus):
    """SummaryEngine over the test stores with a fake generation backend."""
    return SummaryEngine(
        config,
        messages=store,
        summaries=summary_store,
        generation_client=GenerationClient(completion),
        event_bus=event_bus,
    )


@pytest_asyncio.fixture
async def seeded(store):
    """
    Session ``sess_1`` with messages 10..15 alternating user/assistant.

    Returns the stored messages in order.
    """
    messages = []
    for i, message_id in enumerate(range(10, 16)):
        role = "user" if i % 2 == 0 else "assistant"
        messages.append(
            await store.append_message(
                "sess_1",
                role,
                f"line {message_id}",
                message_id=message_id,
                created_at=1_700_000_000_000 + i,
            )
        )
    return messages


def leaf_request(**overrides: Any) -> dict[str, Any]:
    """A well-formed raw ``normal`` request for ``sess_1`` / ``user_1``."""
    payload: dict[str, Any] = {
        "sessionId": "sess_1",
        "userId": "user_1",
        "characterName": "Alice",
        "summaryType": "normal",
        "startMessageId": 10,
        "endMessageId": 15,
    }
    payload.update(overrides)
    return payload


def merge_request(parent_ids: list[int], **overrides: Any) -> dict[str, Any]:
    """A well-formed raw ``super`` request folding *parent_ids*."""
    payload: dict[str, Any] = {
        "sessionId": "sess_1",
        "userId": "user_1",
        "characterName": "Alice",
        "summaryType": "super",
        "summaryContent": "first part\nsecond part",
        "parentSummaryIds": parent_ids,
    }
    payload.update(overrides)
    return payload
