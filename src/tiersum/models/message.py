"""Chat message model read by the summariser."""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]


class Message(BaseModel):
    """
    A single chat message in a session's log.

    Messages are owned by the conversation and are never mutated by the
    summariser. Ordering is by ``created_at`` with ties broken by ``id``.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    """Monotonic integer id assigned by the message store."""
    session_id: str
    role: Role
    content: str
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    """Unix millisecond timestamp."""
