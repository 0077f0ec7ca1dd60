"""Typed payload definitions for each TiersumEvent.

Usage example::

    from tiersum.events.bus import EventBus, TiersumEvent
    from tiersum.events.payloads import SummaryCreatedPayload

    def on_created(event: TiersumEvent, payload: SummaryCreatedPayload) -> None:
        print(f"node {payload['id']} covers {payload['original_message_count']} items")

    bus.subscribe(TiersumEvent.SUMMARY_CREATED, on_created)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import Any, TypedDict


class SummaryRequestedPayload(TypedDict):
    """Payload for :attr:`TiersumEvent.SUMMARY_REQUESTED`."""

    session_id: str
    user_id: str
    summary_type: str
    """``"normal"`` (leaf) or ``"super"`` (merge)."""


class SummaryCreatedPayload(TypedDict):
    """Payload for :attr:`TiersumEvent.SUMMARY_CREATED`.

    The ``model_dump()`` of the persisted :class:`~tiersum.models.summary.SummaryNode`.
    """

    id: int
    session_id: str
    user_id: str
    content: str
    level: int
    original_message_count: int
    message_range: dict[str, Any] | None
    parent_summary_ids: list[int] | None
    is_active: bool
    created_at: int


class SummaryFailedPayload(TypedDict):
    """Payload for :attr:`TiersumEvent.SUMMARY_FAILED`."""

    session_id: str
    kind: str
    """The error's ``kind``, e.g. ``"generation_failed"``."""
    error: str


class SummariesDeactivatedPayload(TypedDict):
    """Payload for :attr:`TiersumEvent.SUMMARIES_DEACTIVATED`."""

    session_id: str
    node_ids: list[int]
