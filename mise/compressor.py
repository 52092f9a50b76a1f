"""
History trimming to an approximate token budget.
"""
import math
from typing import List, Sequence

from mise.models import Message


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Rough token count: a fixed number of characters per token."""
    return math.ceil(len(text) / chars_per_token)


def compress(
    messages: Sequence[Message],
    token_budget: int,
    chars_per_token: int = 4,
) -> List[Message]:
    """Keep the most recent messages that fit the budget, oldest first.

    The newest message is always kept, even if it alone is over budget.
    """
    kept: List[Message] = []
    total = 0
    for message in reversed(messages):
        cost = estimate_tokens(message.content, chars_per_token)
        if kept and total + cost > token_budget:
            break
        kept.append(message)
        total += cost
    kept.reverse()
    return kept
