"""tiersum summarisation components."""

from tiersum.summarize.engine import LEAF_LEVEL, MERGE_LEVEL, SummaryEngine
from tiersum.summarize.prompts import (
    LEAF_TEMPLATE,
    MERGE_TEMPLATE,
    PromptComposer,
    PromptSpec,
)
from tiersum.summarize.range_selector import RangeSelector, render_transcript

__all__ = [
    "SummaryEngine",
    "LEAF_LEVEL",
    "MERGE_LEVEL",
    "PromptComposer",
    "PromptSpec",
    "LEAF_TEMPLATE",
    "MERGE_TEMPLATE",
    "RangeSelector",
    "render_transcript",
]
