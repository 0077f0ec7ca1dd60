"""Prompt templates for leaf and merge summaries.

Leaf prompts wrap a rendered transcript; merge prompts wrap the concatenated
text of existing summaries. Both are pure transformations: no generation
happens here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, meta

from tiersum.models.config import PromptConfig

LEAF_TEMPLATE = """\
Write a concise summary of the following conversation between the user and \
{{ character_name }}. Record in particular:
1. Key events and plot developments
2. Important agreements, decisions or commitments
3. Changes in the relationships between the characters
4. Important background information

Requirements:
- Describe events in the third person
- Keep an objective, neutral tone
- Stay within {{ max_chars }} characters
- Emphasise information that matters for later turns of the conversation

Conversation:
{{ transcript }}

Summary:"""

MERGE_TEMPLATE = """\
The following are several summaries of consecutive parts of one conversation. \
Merge them into a single consolidated summary.

Requirements:
- Remove content repeated across the summaries
- Preserve the chronological order and cause-and-effect relationships of events
- Describe events in the third person
- Keep an objective, neutral tone
- Stay within {{ max_chars }} characters
- Keep the facts most relevant to future decisions in the conversation

Summaries:
{{ summaries }}

Merged summary:"""

_env = Environment(undefined=StrictUndefined, keep_trailing_newline=False, autoescape=False)


def require_template_variable(template_str: str, variable: str) -> None:
    """
    Raise ValueError if the Jinja2 template does not reference *variable*.

    Uses Jinja2 AST parsing so expressions like ``{{ transcript | trim }}`` are
    recognised. Invalid template syntax is also reported as ``ValueError``.
    """
    try:
        ast = _env.parse(template_str)
    except TemplateSyntaxError as exc:
        raise ValueError(f"Invalid Jinja2 template syntax: {exc}") from exc
    if variable not in meta.find_undeclared_variables(ast):
        raise ValueError(f"template must reference {{{{ {variable} }}}}")


@dataclass(frozen=True)
class PromptSpec:
    """A composed generation request, consumed unchanged by the generation client."""

    mode: Literal["leaf", "merge"]
    prompt: str
    max_chars: int
    messages: list[dict[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.messages:
            object.__setattr__(self, "messages", [{"role": "user", "content": self.prompt}])


class PromptComposer:
    """
    Builds leaf and merge prompts according to a :class:`PromptConfig`.

    Example::

        composer = PromptComposer(PromptConfig())
        spec = composer.compose_leaf("User: hi\\nAlice: hello", "Alice")
    """

    def __init__(self, config: PromptConfig | None = None) -> None:
        self._config = config or PromptConfig()
        leaf_source = self._config.leaf_template or LEAF_TEMPLATE
        merge_source = self._config.merge_template or MERGE_TEMPLATE
        require_template_variable(leaf_source, "transcript")
        require_template_variable(merge_source, "summaries")
        self._leaf = _env.from_string(leaf_source)
        self._merge = _env.from_string(merge_source)

    @property
    def user_label(self) -> str:
        return self._config.user_label

    def compose_leaf(self, transcript: str, character_name: str) -> PromptSpec:
        """Wrap a rendered transcript in the leaf instruction template."""
        max_chars = self._config.leaf_max_chars
        prompt = self._leaf.render(
            transcript=transcript,
            character_name=character_name,
            max_chars=max_chars,
        )
        return PromptSpec(mode="leaf", prompt=prompt, max_chars=max_chars)

    def compose_merge(self, concatenated_summaries: str) -> PromptSpec:
        """Wrap already-summarised text in the merge instruction template."""
        max_chars = self._config.merge_max_chars
        prompt = self._merge.render(summaries=concatenated_summaries, max_chars=max_chars)
        return PromptSpec(mode="merge", prompt=prompt, max_chars=max_chars)
