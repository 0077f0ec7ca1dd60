"""Text-generation backend adapter."""

from tiersum.generation.client import (
    FALLBACK_SUMMARY_TEXT,
    CompletionCallable,
    GenerationClient,
    normalize_base_url,
    resolve_model,
)

__all__ = [
    "FALLBACK_SUMMARY_TEXT",
    "CompletionCallable",
    "GenerationClient",
    "normalize_base_url",
    "resolve_model",
]
