"""Summary node and summary request models."""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from tiersum.errors import InvalidRequest

# ── Summary Node ───────────────────────────────────────────────────────────────


class MessageRange(BaseModel):
    """Inclusive ``[start_id, end_id]`` interval of message ids covered by a leaf summary."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    start_id: int = Field(gt=0)
    end_id: int = Field(gt=0)

    @model_validator(mode="after")
    def validate_order(self) -> MessageRange:
        if self.start_id > self.end_id:
            raise ValueError("start_id must be less than or equal to end_id")
        return self


class SummaryNode(BaseModel):
    """
    A node in a session's summary tree.

    Level 1 nodes (leaf summaries) cover an inclusive range of raw messages and
    carry ``message_range``. Level 2+ nodes (merge summaries) fold other summary
    nodes and carry ``parent_summary_ids``. Exactly one of the two is populated.

    Nodes are immutable after creation. Correcting a summary means creating a
    new node and deactivating the old one through the store.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: int | None = None
    """Assigned by the store on insert; ``None`` until persisted."""
    session_id: str
    user_id: str
    content: str
    level: int = Field(ge=1)
    original_message_count: int = Field(default=0, ge=0)
    """Level 1: messages folded in. Level 2+: parent summaries folded in."""
    message_range: MessageRange | None = None
    parent_summary_ids: list[int] | None = None
    is_active: bool = True
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    """Unix millisecond timestamp."""

    @model_validator(mode="after")
    def validate_lineage(self) -> SummaryNode:
        if self.level == 1:
            if self.message_range is None:
                raise ValueError("level 1 summary nodes require message_range")
            if self.parent_summary_ids:
                raise ValueError("level 1 summary nodes cannot have parent_summary_ids")
        else:
            if not self.parent_summary_ids:
                raise ValueError("merge summary nodes require non-empty parent_summary_ids")
            if self.message_range is not None:
                raise ValueError("merge summary nodes cannot have message_range")
        return self

    @property
    def is_leaf(self) -> bool:
        return self.level == 1


# ── Identity ───────────────────────────────────────────────────────────────────


class AuthenticatedUser(BaseModel):
    """The identity resolved by the auth collaborator. Only ``id`` is inspected."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)


# ── Requests ───────────────────────────────────────────────────────────────────


class _SummaryRequestBase(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    session_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    character_name: str = Field(min_length=1)


class LeafSummaryRequest(_SummaryRequestBase):
    """Summarise the raw messages in ``[start_message_id, end_message_id]``."""

    summary_type: Literal["normal"] = "normal"
    start_message_id: int = Field(gt=0)
    end_message_id: int = Field(gt=0)

    @model_validator(mode="after")
    def validate_range(self) -> LeafSummaryRequest:
        if self.start_message_id > self.end_message_id:
            raise ValueError("startMessageId must be less than or equal to endMessageId")
        return self

    @property
    def message_range(self) -> MessageRange:
        return MessageRange(start_id=self.start_message_id, end_id=self.end_message_id)


class MergeSummaryRequest(_SummaryRequestBase):
    """
    Fold existing summaries into a level-2 node.

    ``summary_content`` is the caller-concatenated text of the folded nodes.
    Range fields sent alongside a merge request are not applicable and are
    dropped during validation.
    """

    summary_type: Literal["super"] = "super"
    summary_content: str = Field(min_length=1)
    parent_summary_ids: list[int] = Field(min_length=1)

    @field_validator("parent_summary_ids")
    @classmethod
    def validate_parent_ids(cls, value: list[int]) -> list[int]:
        if any(pid <= 0 for pid in value):
            raise ValueError("parent summary ids must be positive integers")
        if len(set(value)) != len(value):
            raise ValueError("parent summary ids must be unique")
        return value


SummaryRequest = Annotated[
    LeafSummaryRequest | MergeSummaryRequest,
    Field(discriminator="summary_type"),
]


_REQUEST_ADAPTER: TypeAdapter[LeafSummaryRequest | MergeSummaryRequest] = TypeAdapter(
    SummaryRequest
)


def request_user_id(payload: Any) -> str | None:
    """Return the requesting user id from a raw payload or a parsed request."""
    if isinstance(payload, _SummaryRequestBase):
        return payload.user_id
    if isinstance(payload, Mapping):
        value = payload.get("userId", payload.get("user_id"))
        return str(value).strip() if value is not None else None
    return None


def parse_summary_request(
    payload: Mapping[str, Any] | LeafSummaryRequest | MergeSummaryRequest,
) -> LeafSummaryRequest | MergeSummaryRequest:
    """
    Validate a raw request payload into its tagged variant.

    ``summaryType`` (or ``summary_type``) selects the variant and defaults to
    ``"normal"``. Keys may be camelCase or snake_case.

    Raises:
        InvalidRequest: If the payload is malformed. ``field`` names the first
            offending key.
    """
    if isinstance(payload, (LeafSummaryRequest, MergeSummaryRequest)):
        return payload
    if not isinstance(payload, Mapping):
        raise InvalidRequest("Summary request must be a mapping")

    data = dict(payload)
    summary_type = data.pop("summary_type", None)
    summary_type = data.pop("summaryType", summary_type) or "normal"
    data["summaryType"] = summary_type
    if summary_type not in ("normal", "super"):
        raise InvalidRequest(
            f"Unknown summaryType {summary_type!r}; expected 'normal' or 'super'",
            field="summaryType",
        )

    try:
        return _REQUEST_ADAPTER.validate_python(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        # Discriminated-union locations are prefixed with the tag value.
        names = [str(p) for p in first["loc"] if str(p) not in ("normal", "super")]
        field_name = names[-1] if names else None
        raise InvalidRequest(first["msg"], field=field_name) from exc
