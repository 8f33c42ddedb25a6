"""Token estimation.

Single source of truth for the ~4 chars/token heuristic used by the
budget manager. This is a deliberate approximation: provider tokenizers
differ, and switching to a real tokenizer would change every budget
outcome, so the estimate stays as is.
"""

from __future__ import annotations

import json
import math


def estimate_tokens(text: str) -> int:
    """Estimate token count as ceil(len / 4). Empty text costs nothing."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def message_text(message: dict) -> str:
    content = message.get("content", "")
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=False)


def estimate_message_tokens(messages: list[dict]) -> int:
    """Sum of content estimates; roles and framing are not counted."""
    return sum(estimate_tokens(message_text(m)) for m in messages)
