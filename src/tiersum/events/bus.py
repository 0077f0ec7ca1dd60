"""In-process pub/sub event bus for summary lifecycle events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["TiersumEvent", dict[str, Any]], None | Awaitable[None]]


class TiersumEvent(StrEnum):
    """All event types published by tiersum components.

    Typed payload definitions live in :mod:`tiersum.events.payloads`.

    ``SUMMARY_REQUESTED``
        :class:`~tiersum.events.payloads.SummaryRequestedPayload`:
        ``session_id``, ``user_id``, ``summary_type``

    ``SUMMARY_CREATED``
        :class:`~tiersum.events.payloads.SummaryCreatedPayload`:
        the persisted node's ``model_dump()``.

    ``SUMMARY_FAILED``
        :class:`~tiersum.events.payloads.SummaryFailedPayload`:
        ``session_id``, ``kind``, ``error``

    ``SUMMARIES_DEACTIVATED``
        :class:`~tiersum.events.payloads.SummariesDeactivatedPayload`:
        ``session_id``, ``node_ids``
    """

    SUMMARY_REQUESTED = "summary.requested"
    SUMMARY_CREATED = "summary.created"
    SUMMARY_FAILED = "summary.failed"
    SUMMARIES_DEACTIVATED = "summaries.deactivated"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled via ``loop.create_task()`` (fire-and-forget).
    - Handler exceptions are logged but never propagate to the publisher.

    Example::

        bus = EventBus()

        def on_created(event, payload):
            print(f"Summary {payload['id']} at level {payload['level']}")

        bus.subscribe(TiersumEvent.SUMMARY_CREATED, on_created)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[TiersumEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._logger = logger or structlog.get_logger("tiersum.events")

    def subscribe(self, event: TiersumEvent, handler: Handler) -> None:
        """Register a handler for a specific event type. Sync or async."""
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for ALL event types."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: TiersumEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: TiersumEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Sync handlers are called immediately in registration order. Async
        handlers are scheduled as background tasks. Exceptions from any
        handler are logged and swallowed.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                    except RuntimeError:
                        # No running event loop; drop the coroutine cleanly
                        result.close()
                        continue
                    loop.create_task(result)  # noqa: RUF006
            except Exception as exc:
                self._logger.error(
                    "event_handler_error",
                    event=str(event),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )
