"""
Prompt context assembly under a size budget.

Retrieved chunks are rendered as labeled blocks, in rank order, until the
budget is used up. The first block that does not fit is cut to the space
left, provided enough space is left for the cut to be worth reading.
"""

import math
from dataclasses import dataclass, field

from ..config.settings import ContextConfig
from ..observability.logging import get_logger
from ..observability.probe import probe
from .chunking import Chunk
from .retriever import ScoredChunk

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token count, four characters per token."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def format_block(chunk: Chunk) -> str:
    return f"[{chunk.label}]\n{chunk.text}"


@dataclass
class AssembledContext:
    """Prompt-ready context and the chunks that made it in."""

    content: str
    included: list[ScoredChunk] = field(default_factory=list)
    truncated: bool = False

    @property
    def total_chars(self) -> int:
        return len(self.content)

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.content)

    @property
    def is_empty(self) -> bool:
        return not self.content


class ContextAssembler:
    """Greedy, rank-ordered context builder with a hard size budget."""

    def __init__(self, config: ContextConfig | None = None):
        self.config = config or ContextConfig()

    def char_budget(self, budget: int | None = None) -> int:
        budget = self.config.budget if budget is None else budget
        if self.config.unit == "tokens":
            return budget * CHARS_PER_TOKEN
        return budget

    def assemble(self, scored_chunks: list[ScoredChunk], budget: int | None = None) -> AssembledContext:
        """Render ``scored_chunks`` in order into at most ``budget`` units of text."""
        limit = self.char_budget(budget)
        separator = self.config.separator

        parts: list[str] = []
        included: list[ScoredChunk] = []
        used = 0
        truncated = False

        with probe("context.assemble", chunks=len(scored_chunks), limit=limit):
            for item in scored_chunks:
                block = format_block(item.chunk)
                joint = len(separator) if parts else 0

                if used + joint + len(block) <= limit:
                    parts.append(block)
                    included.append(item)
                    used += joint + len(block)
                    continue

                remaining = limit - used - joint
                if remaining > self.config.min_truncation_chars:
                    parts.append(block[:remaining])
                    included.append(item)
                    truncated = True
                break

        context = AssembledContext(
            content=separator.join(parts), included=included, truncated=truncated
        )
        logger.debug(
            "Context assembled",
            blocks=len(included),
            dropped=len(scored_chunks) - len(included),
            chars=context.total_chars,
            truncated=truncated,
        )
        return context
