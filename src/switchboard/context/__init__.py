"""Context budgeting: the four-part prompt, its fit loop and formatters."""

from switchboard.context.budget import (
    BudgetStats,
    PromptInput,
    budget_stats,
    fit,
    fit_input,
)
from switchboard.context.compression import (
    COMPRESSION_LADDER,
    CompressionMode,
    next_compression_mode,
)
from switchboard.context.formatting import format_standard, format_with_cache_blocks
from switchboard.context.history import ConversationHistory, InMemoryConversationHistory
from switchboard.context.parts import ContextBudget, PromptParts
from switchboard.context.subjects import (
    PastSubject,
    format_past_subjects,
    summarize_subject,
    summarize_subjects,
)
from switchboard.context.tokens import estimate_tokens

__all__ = [
    "COMPRESSION_LADDER",
    "BudgetStats",
    "CompressionMode",
    "ContextBudget",
    "ConversationHistory",
    "InMemoryConversationHistory",
    "PastSubject",
    "PromptInput",
    "PromptParts",
    "budget_stats",
    "estimate_tokens",
    "fit",
    "fit_input",
    "format_past_subjects",
    "format_standard",
    "format_with_cache_blocks",
    "next_compression_mode",
    "summarize_subject",
    "summarize_subjects",
]
