"""Error taxonomy surfaced by the summariser to its callers."""

from __future__ import annotations


class TiersumError(Exception):
    """Base class for errors surfaced to callers of the summariser."""

    kind: str = "error"


class Unauthenticated(TiersumError):
    """Raised when no credential, or an invalid one, was presented."""

    kind = "unauthenticated"

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message)


class Forbidden(TiersumError):
    """Raised when the authenticated identity may not act on the requested data."""

    kind = "forbidden"

    def __init__(self, message: str = "Not permitted to operate on this resource") -> None:
        super().__init__(message)


class InvalidRequest(TiersumError):
    """Raised when a request is missing required fields or is malformed."""

    kind = "invalid_request"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        if field:
            message = f"{field}: {message}"
        super().__init__(message)
        self.field = field


class NotFound(TiersumError):
    """Raised when the data a request refers to does not exist."""

    kind = "not_found"


class SummaryGenerationFailed(TiersumError):
    """Base class for failures of the external text-generation call."""

    kind = "generation_failed"


class GenerationFailed(SummaryGenerationFailed):
    """Raised when the generation backend reports a non-success outcome."""

    kind = "generation_failed"

    def __init__(self, status: int | None, body: str) -> None:
        prefix = f"status {status}" if status is not None else "unknown status"
        super().__init__(f"Summary generation failed ({prefix}): {body}")
        self.status = status
        self.body = body


class GenerationUnavailable(SummaryGenerationFailed):
    """Raised on transport-level failure: timeout, refused connection, DNS error."""

    kind = "generation_unavailable"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Generation backend unavailable: {reason}")
        self.reason = reason


class PersistenceFailed(TiersumError):
    """Raised when the summary store fails to persist a generated node."""

    kind = "persistence_failed"
