"""Token estimation and request batching for the embeddings API."""

from __future__ import annotations

import math
from typing import Callable, Iterable, Sequence, TypeVar

CHARS_PER_TOKEN = 4

T = TypeVar("T")


def estimate_tokens(text: str | None) -> int:
    """Return an approximate token count for *text*.

    Uses a fixed characters-per-token ratio; the result is monotonic in the text
    length but is not an exact tokenizer count.
    """

    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_batch_tokens(texts: Iterable[str]) -> int:
    return sum(estimate_tokens(text) for text in texts)


def _item_text(item) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        return item.get("content") or ""
    return getattr(item, "content", "") or ""


def split_by_token_budget(
    items: Sequence[T],
    max_tokens: int,
    *,
    text_of: Callable[[T], str] = _item_text,
) -> list[list[T]]:
    """Partition *items* into consecutive sub-batches under *max_tokens*.

    A sub-batch is closed as soon as the next item would push it over the
    budget. An item whose own estimate exceeds the budget still gets a
    sub-batch of its own.
    """

    if max_tokens <= 0:
        raise ValueError("max_tokens must be positive")

    batches: list[list[T]] = []
    current: list[T] = []
    current_tokens = 0

    for item in items:
        item_tokens = estimate_tokens(text_of(item))
        if current and current_tokens + item_tokens > max_tokens:
            batches.append(current)
            current = []
            current_tokens = 0
        current.append(item)
        current_tokens += item_tokens

    if current:
        batches.append(current)
    return batches
