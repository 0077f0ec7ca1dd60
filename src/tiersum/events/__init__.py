"""tiersum event bus."""

from tiersum.events.bus import EventBus, Handler, TiersumEvent
from tiersum.events.payloads import (
    SummariesDeactivatedPayload,
    SummaryCreatedPayload,
    SummaryFailedPayload,
    SummaryRequestedPayload,
)

__all__ = [
    "EventBus",
    "Handler",
    "TiersumEvent",
    "SummariesDeactivatedPayload",
    "SummaryCreatedPayload",
    "SummaryFailedPayload",
    "SummaryRequestedPayload",
]
