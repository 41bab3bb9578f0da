"""
AIGate — Prompt Budgeter
========================

What:  Approximate token counting and order-preserving prompt truncation.
Why:   Transcripts routinely exceed a small model's context window. Dropping
       filler lines while keeping section headers and the instruction block
       lets a smaller model still answer instead of failing with a 413.
How:   Tokens are estimated as characters / 4 (an approximation, not a
       bound). Truncation walks the prompt line by line:

           high-priority marker line        → always kept
           running + line <= target * 0.8   → kept
           history/context marker line      → first 80 chars + "... [truncated]"
           anything else                    → dropped
           running >= target * 0.9          → stop

       Lines are never reordered.
"""

import logging
import math
from typing import Iterable, List, Optional, Sequence, Tuple

from aigate.schemas.invocation import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_HIGH_PRIORITY_MARKERS = (
    "## Available Data",
    "## AVAILABLE DATA",
    "## Instructions",
    "## CHART GENERATION PROMPT",
    "## MERMAID SYNTAX RULES",
    "Note Content",
    "User Message",
    "User Chart Request",
    "chart-type:",
)

DEFAULT_HISTORY_MARKERS = (
    "Transcript",
    "Previous Charts",
    "Previous Chart",
    "Chat History",
    "Previous Messages",
)

TRUNCATION_SUFFIX = "... [truncated]"


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


class PromptBudgeter:
    """Best-effort packing of a prompt into a token budget."""

    def __init__(
        self,
        high_priority_markers: Iterable[str] = DEFAULT_HIGH_PRIORITY_MARKERS,
        history_markers: Iterable[str] = DEFAULT_HISTORY_MARKERS,
        history_prefix_chars: int = 80,
        keep_ratio: float = 0.8,
        stop_ratio: float = 0.9,
    ):
        self.high_priority_markers = tuple(high_priority_markers)
        self.history_markers = tuple(history_markers)
        self.history_prefix_chars = history_prefix_chars
        self.keep_ratio = keep_ratio
        self.stop_ratio = stop_ratio

    estimate_tokens = staticmethod(estimate_tokens)

    def truncate(self, prompt: str, target_tokens: int) -> Tuple[str, bool]:
        """
        Shrink `prompt` toward `target_tokens`.

        Returns:
            (prompt, was_truncated). The prompt is returned untouched when its
            estimate already fits.
        """
        estimated = estimate_tokens(prompt)
        if estimated <= target_tokens:
            return prompt, False

        kept: List[str] = []
        running = 0
        for line in prompt.split("\n"):
            line_tokens = estimate_tokens(line)
            if self._is_high_priority(line) or running + line_tokens <= target_tokens * self.keep_ratio:
                kept.append(line)
                running += line_tokens
            elif self._is_history(line):
                shortened = line[: self.history_prefix_chars] + TRUNCATION_SUFFIX
                kept.append(shortened)
                running += estimate_tokens(shortened)

            if running >= target_tokens * self.stop_ratio:
                break

        truncated = "\n".join(kept)
        logger.info(
            "Prompt truncated: %d -> %d estimated tokens (target %d)",
            estimated,
            estimate_tokens(truncated),
            target_tokens,
        )
        return truncated, True

    def truncate_messages(
        self,
        messages: Sequence[ChatMessage],
        target_tokens: int,
        floor_ratio: float = 0.25,
    ) -> Tuple[List[ChatMessage], bool]:
        """
        Apply the budget to a conversation by shortening its last user message.

        The other messages are kept verbatim; the last user message gets
        whatever budget they leave, but never less than target * floor_ratio.
        """
        total = sum(estimate_tokens(m.content) for m in messages)
        if total <= target_tokens:
            return list(messages), False

        last_user = self._last_user_index(messages)
        if last_user is None:
            return list(messages), False

        others = total - estimate_tokens(messages[last_user].content)
        budget = max(int(target_tokens * floor_ratio), target_tokens - others)
        content, was_truncated = self.truncate(messages[last_user].content, budget)

        result = list(messages)
        result[last_user] = ChatMessage(role="user", content=content)
        return result, was_truncated

    @staticmethod
    def _last_user_index(messages: Sequence[ChatMessage]) -> Optional[int]:
        for i in range(len(messages) - 1, -1, -1):
            if messages[i].role == "user":
                return i
        return None

    def _is_high_priority(self, line: str) -> bool:
        return any(marker in line for marker in self.high_priority_markers)

    def _is_history(self, line: str) -> bool:
        return any(marker in line for marker in self.history_markers)
