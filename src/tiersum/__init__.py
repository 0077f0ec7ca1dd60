"""
tiersum: hierarchical summarisation of long conversations.

Primary entry point::

    from tiersum import SummaryEngine, TiersumConfig, GenerationConfig, AuthenticatedUser

    config = TiersumConfig(generation=GenerationConfig(api_key="sk-..."))
    async with await SummaryEngine.open(config) as engine:
        node = await engine.generate(request, AuthenticatedUser(id="user_1"))
        print(node.level, node.content)
"""

from tiersum.errors import (
    Forbidden,
    GenerationFailed,
    GenerationUnavailable,
    InvalidRequest,
    NotFound,
    PersistenceFailed,
    SummaryGenerationFailed,
    TiersumError,
    Unauthenticated,
)
from tiersum.models import (
    AuthenticatedUser,
    GenerationConfig,
    LeafSummaryRequest,
    MergeSummaryRequest,
    Message,
    MessageRange,
    PromptConfig,
    StoreConfig,
    SummaryNode,
    SummaryRequest,
    TiersumConfig,
    parse_summary_request,
)
from tiersum.events.bus import EventBus, TiersumEvent
from tiersum.generation.client import FALLBACK_SUMMARY_TEXT, GenerationClient
from tiersum.store import ImmutableStore, StorePool, SummaryStore
from tiersum.summarize.engine import SummaryEngine
from tiersum.summarize.prompts import PromptComposer
from tiersum.service import Authenticator, SummaryService

__version__ = "0.1.0"

__all__ = [
    # Core
    "SummaryEngine",
    "SummaryService",
    "Authenticator",
    # Config
    "TiersumConfig",
    "GenerationConfig",
    "PromptConfig",
    "StoreConfig",
    # Models
    "AuthenticatedUser",
    "Message",
    "MessageRange",
    "SummaryNode",
    "SummaryRequest",
    "LeafSummaryRequest",
    "MergeSummaryRequest",
    "parse_summary_request",
    # Errors
    "TiersumError",
    "Unauthenticated",
    "Forbidden",
    "InvalidRequest",
    "NotFound",
    "SummaryGenerationFailed",
    "GenerationFailed",
    "GenerationUnavailable",
    "PersistenceFailed",
    # Events
    "EventBus",
    "TiersumEvent",
    # Components
    "GenerationClient",
    "FALLBACK_SUMMARY_TEXT",
    "PromptComposer",
    "ImmutableStore",
    "StorePool",
    "SummaryStore",
]
