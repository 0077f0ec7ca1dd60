"""tiersum persistence layer."""

from tiersum.store.base import MessageLog, SummaryRepository
from tiersum.store.immutable import (
    DuplicateIDError,
    ImmutableStore,
    MessageNotFoundError,
    StoreNotInitializedError,
    TiersumStoreError,
)
from tiersum.store.pool import StorePool
from tiersum.store.summaries import SummaryStore

__all__ = [
    "ImmutableStore",
    "StorePool",
    "SummaryStore",
    "MessageLog",
    "SummaryRepository",
    "TiersumStoreError",
    "StoreNotInitializedError",
    "MessageNotFoundError",
    "DuplicateIDError",
]
