"""tiersum data models."""

from tiersum.models.config import (
    DEFAULT_MODEL,
    DEFAULT_SYSTEM_PROMPT,
    GenerationConfig,
    PromptConfig,
    StoreConfig,
    TiersumConfig,
)
from tiersum.models.message import Message, Role
from tiersum.models.summary import (
    AuthenticatedUser,
    LeafSummaryRequest,
    MergeSummaryRequest,
    MessageRange,
    SummaryNode,
    SummaryRequest,
    parse_summary_request,
)

__all__ = [
    # Config
    "DEFAULT_MODEL",
    "DEFAULT_SYSTEM_PROMPT",
    "GenerationConfig",
    "PromptConfig",
    "StoreConfig",
    "TiersumConfig",
    # Messages
    "Message",
    "Role",
    # Summaries
    "MessageRange",
    "SummaryNode",
    "AuthenticatedUser",
    "LeafSummaryRequest",
    "MergeSummaryRequest",
    "SummaryRequest",
    "parse_summary_request",
]
