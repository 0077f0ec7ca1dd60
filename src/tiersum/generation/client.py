"""Text-generation client for summary prompts, backed by litellm."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import litellm
import structlog

from tiersum.errors import GenerationFailed, GenerationUnavailable
from tiersum.models.config import GenerationConfig

if TYPE_CHECKING:
    from tiersum.summarize.prompts import PromptSpec

FALLBACK_SUMMARY_TEXT = "summary generation failed"
"""Returned, as a successful result, when the backend response carries no usable text."""

CompletionCallable = Callable[..., Awaitable[Any]]

_PROVIDER_PREFIXES: tuple[tuple[str, str], ...] = (
    ("deepseek", "deepseek"),
    ("gemini", "gemini"),
    ("gpt", "openai"),
    ("o1", "openai"),
    ("o3", "openai"),
)

_TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    litellm.Timeout,
    litellm.APIConnectionError,
    ConnectionError,
    TimeoutError,
)


def resolve_model(config: GenerationConfig) -> str:
    """
    Return the litellm model string for *config*.

    A routing override targets an OpenAI-compatible endpoint, so the actual
    model is addressed through the ``openai/`` provider. Bare model names are
    mapped to a provider prefix by family; names containing ``/`` pass through.
    """
    if config.has_routing_override:
        return f"openai/{config.actual_model}"
    model = config.model
    if "/" in model:
        return model
    lower = model.lower()
    for family, provider in _PROVIDER_PREFIXES:
        if lower.startswith(family):
            return f"{provider}/{model}"
    return model


def normalize_base_url(base_url: str) -> str:
    """Ensure a relay base URL ends with ``/v1``."""
    trimmed = base_url.rstrip("/")
    return trimmed if trimmed.endswith("/v1") else f"{trimmed}/v1"


def _thinking_kwargs(config: GenerationConfig) -> dict[str, Any]:
    """
    Forward the thinking budget to Gemini 2.5 Flash models.

    Gemini 2.5 Pro always runs with automatic thinking: a relay gets an empty
    ``thinkingConfig`` and a direct call gets no thinking argument at all.
    """
    if config.thinking_budget is None:
        return {}
    target = config.actual_model if config.has_routing_override else config.model
    target = (target or "").lower()
    is_pro = target.endswith("gemini-2.5-pro")
    is_flash = "gemini-2.5-flash" in target
    if not (is_pro or is_flash):
        return {}
    if config.has_routing_override:
        # Relays take the Gemini-native field in the request body.
        budget = config.thinking_budget if is_flash else 0
        thinking = {"thinkingBudget": budget} if budget else {}
        return {"extra_body": {"thinkingConfig": thinking}}
    if is_pro:
        return {}
    return {"thinking": {"type": "enabled", "budget_tokens": config.thinking_budget}}


def _extract_text(response: Any) -> str | None:
    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError, KeyError, TypeError):
        return None
    if not isinstance(content, str) or not content.strip():
        return None
    return content


class GenerationClient:
    """
    Executes a :class:`PromptSpec` against the configured backend.

    No retries happen here: an upstream error status raises
    :class:`GenerationFailed` and a transport failure (including the
    ``timeout_secs`` bound expiring) raises :class:`GenerationUnavailable`.
    An upstream success without usable text returns
    :data:`FALLBACK_SUMMARY_TEXT`, which is a success, not an error.

    Args:
        completion: Async completion callable with the ``litellm.acompletion``
            signature. Injected in tests; defaults to ``litellm.acompletion``.
    """

    def __init__(self, completion: CompletionCallable | None = None) -> None:
        self._completion = completion or litellm.acompletion
        self._logger = structlog.get_logger("tiersum.generation")

    def build_request(self, prompt: PromptSpec, config: GenerationConfig) -> dict[str, Any]:
        """Return the keyword arguments passed to the completion callable."""
        request: dict[str, Any] = {
            "model": resolve_model(config),
            "messages": [
                {"role": "system", "content": config.system_prompt},
                *prompt.messages,
            ],
            "api_key": config.api_key.get_secret_value(),
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
        }
        if config.has_routing_override and config.base_url is not None:
            request["api_base"] = normalize_base_url(config.base_url)
        request.update(_thinking_kwargs(config))
        return request

    async def generate(self, prompt: PromptSpec, config: GenerationConfig) -> str:
        """
        Run one generation call and return the generated text verbatim.

        Raises:
            GenerationFailed: The backend returned a non-success status.
            GenerationUnavailable: The backend could not be reached in time.
        """
        request = self.build_request(prompt, config)
        model = request["model"]
        self._logger.debug("generation_started", model=model, mode=prompt.mode)

        try:
            response = await asyncio.wait_for(
                self._completion(**request), timeout=config.timeout_secs
            )
        except _TRANSPORT_ERRORS as exc:
            self._logger.warning(
                "generation_unavailable", model=model, error_type=type(exc).__name__
            )
            reason = str(exc) or f"timed out after {config.timeout_secs}s"
            raise GenerationUnavailable(reason) from exc
        except Exception as exc:
            status = getattr(exc, "status_code", None)
            self._logger.warning("generation_failed", model=model, status=status, error=str(exc))
            raise GenerationFailed(status, str(exc)) from exc

        text = _extract_text(response)
        if text is None:
            self._logger.warning("generation_empty_content", model=model, mode=prompt.mode)
            return FALLBACK_SUMMARY_TEXT

        self._logger.info("generation_completed", model=model, mode=prompt.mode, chars=len(text))
        return text
