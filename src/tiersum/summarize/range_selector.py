"""Message-range selection and transcript rendering for leaf summaries."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from tiersum.errors import InvalidRequest, NotFound
from tiersum.models.message import Message
from tiersum.store.base import MessageLog

logger = structlog.get_logger("tiersum.range_selector")


class RangeSelector:
    """Fetches the closed range of messages a leaf summary will cover. Read-only."""

    def __init__(self, messages: MessageLog) -> None:
        self._messages = messages

    async def select(self, session_id: str, start_id: int, end_id: int) -> list[Message]:
        """
        Return every message of *session_id* whose id lies in ``[start_id, end_id]``.

        Ids may have gaps, so the result can be shorter than
        ``end_id - start_id + 1``.

        Raises:
            InvalidRequest: If the ids are not positive or ``start_id > end_id``.
            NotFound: If no message falls in the range.
        """
        if start_id <= 0 or end_id <= 0:
            raise InvalidRequest("message ids must be positive integers", field="startMessageId")
        if start_id > end_id:
            raise InvalidRequest(
                "startMessageId must be less than or equal to endMessageId",
                field="startMessageId",
            )

        messages = await self._messages.fetch_range(session_id, start_id, end_id)
        if not messages:
            logger.warning(
                "range_empty", session_id=session_id, start_id=start_id, end_id=end_id
            )
            raise NotFound(
                f"No messages in range [{start_id}, {end_id}] for session {session_id!r}"
            )

        logger.debug(
            "range_selected",
            session_id=session_id,
            start_id=start_id,
            end_id=end_id,
            message_count=len(messages),
        )
        return messages


def render_transcript(
    messages: Sequence[Message],
    character_name: str,
    user_label: str = "User",
) -> str:
    """Render messages as ``speaker: content`` lines, one per message, in order."""
    return "\n".join(
        f"{user_label if msg.role == 'user' else character_name}: {msg.content}"
        for msg in messages
    )
