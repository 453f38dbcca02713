"""Token estimation and request trimming.

Token counts use a fixed heuristic of one token per four characters. It is not
a tokenizer and is kept stable so limits behave the same across services.
"""

from __future__ import annotations

import math
from dataclasses import replace
from enum import Enum

from flowroute.llm.models import LLMMessage, LLMRequest, LLMRole

CHARS_PER_TOKEN = 4
TRIM_STEP_CHARS = 10


class TrimmingStrategy(str, Enum):
    """Where characters are removed from oversized content."""

    NONE = "none"
    START = "start"
    MIDDLE = "middle"
    END = "end"


def estimate_tokens(text: str) -> int:
    return len(text) // CHARS_PER_TOKEN


def adjusted_token_limit(token_limit: int, buffer_fraction: float) -> int:
    """Limit reduced by the safety buffer, never below zero."""

    if not 0.0 <= buffer_fraction < 1.0:
        raise ValueError(f"buffer_fraction must be >= 0 and < 1, got {buffer_fraction!r}")
    return max(0, math.floor(token_limit * (1 - buffer_fraction)))


def trim_text(text: str, *, max_tokens: int, strategy: TrimmingStrategy) -> str:
    """Remove ten characters at a time until the estimate fits ``max_tokens``."""

    if strategy is TrimmingStrategy.NONE:
        return text

    half_step = TRIM_STEP_CHARS // 2
    while estimate_tokens(text) > max_tokens:
        if strategy is TrimmingStrategy.START:
            text = text[TRIM_STEP_CHARS:]
        elif strategy is TrimmingStrategy.END:
            text = text[:-TRIM_STEP_CHARS]
        elif len(text) <= TRIM_STEP_CHARS:
            text = ""
        else:
            middle = len(text) // 2
            text = text[: middle - half_step] + text[middle + half_step :]
    return text


def optimize_request(
    request: LLMRequest,
    *,
    token_limit: int,
    strategy: TrimmingStrategy,
    buffer_fraction: float,
) -> LLMRequest:
    """Collapse the request into one user message trimmed to fit ``token_limit``.

    With ``TrimmingStrategy.NONE`` the request is returned unchanged.
    """

    if strategy is TrimmingStrategy.NONE:
        return request

    trimmed = trim_text(
        request.text,
        max_tokens=adjusted_token_limit(token_limit, buffer_fraction),
        strategy=strategy,
    )
    return replace(request, messages=(LLMMessage(role=LLMRole.USER, content=trimmed),))
