"""Context budget manager.

Fits a system prompt, past-subject summaries, recent messages and a new
message into a model's context window. A quarter of the window is held
back for the response. When the prompt does not fit, the fit loop applies
one strategy per round and rebuilds:

1. shrink the recent-message window by 5 (floor 5)
2. move one step down the compression ladder
3. shrink the past-subject count by 5 (floor 3)
4. emergency: 3 recent messages, no past subjects, extreme compression

The loop stops once the prompt fits or after the emergency step. An
emergency prompt that still overflows is returned with ``fits == False``
so the caller can reject or truncate it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from switchboard.context.compression import CompressionMode, next_compression_mode
from switchboard.context.parts import ContextBudget, PromptParts
from switchboard.context.subjects import PastSubject, format_past_subjects
from switchboard.context.tokens import estimate_tokens

logger = logging.getLogger(__name__)

MESSAGE_STEP = 5
MESSAGE_FLOOR = 5
SUBJECT_STEP = 5
SUBJECT_FLOOR = 3
EMERGENCY_MESSAGE_LIMIT = 3


@dataclass
class PromptInput:
    """Unfitted prompt material handed to the dispatcher."""

    new_message: str
    system_prompt: str = ""
    past_subjects: list[PastSubject] = field(default_factory=list)
    current_messages: list[dict] = field(default_factory=list)
    target_past_subjects: int | None = None
    target_message_limit: int | None = None
    initial_compression: CompressionMode | str | None = None
    subject_footer: str = ""


def _build(
    system_prompt: str,
    past_subjects: list[PastSubject],
    current_messages: list[dict],
    new_message: str,
    budget: ContextBudget,
    subject_footer: str,
) -> PromptParts:
    included = past_subjects[:budget.past_subject_count]
    recent = current_messages[-budget.current_message_limit:] if budget.current_message_limit else []
    return PromptParts.build(
        system_prompt=system_prompt,
        new_message=new_message,
        recent_messages=recent,
        past_subjects_text=format_past_subjects(
            included, budget.past_subjects_budget, budget.compression_mode,
            footer=subject_footer,
        ),
        subject_ids=[s.id for s in included],
        budget=budget,
    )


def _shrink(budget: ContextBudget) -> None:
    """Apply the next strategy of the fit ladder to ``budget``."""
    if budget.current_message_limit > MESSAGE_FLOOR:
        budget.current_message_limit = max(
            MESSAGE_FLOOR, budget.current_message_limit - MESSAGE_STEP,
        )
    elif budget.compression_mode is not CompressionMode.EXTREME:
        budget.compression_mode = next_compression_mode(budget.compression_mode)
    elif budget.past_subject_count > SUBJECT_FLOOR:
        budget.past_subject_count = max(
            SUBJECT_FLOOR, budget.past_subject_count - SUBJECT_STEP,
        )
    else:
        budget.current_message_limit = EMERGENCY_MESSAGE_LIMIT
        budget.past_subject_count = 0
        budget.compression_mode = CompressionMode.EXTREME
        budget.emergency = True


def fit(
    system_prompt: str,
    past_subjects: list[PastSubject],
    current_messages: list[dict],
    new_message: str,
    context_window: int,
    target_past_subject_count: int = 20,
    target_message_limit: int = 30,
    initial_compression: CompressionMode | str = CompressionMode.BALANCED,
    subject_footer: str = "",
) -> PromptParts:
    """Return prompt parts that fit ``context_window`` minus the reserve."""
    budget = ContextBudget.create(
        context_window=context_window,
        system_tokens=estimate_tokens(system_prompt),
        target_past_subjects=target_past_subject_count,
        target_message_limit=target_message_limit,
        compression_mode=initial_compression,
    )
    parts = _build(
        system_prompt, past_subjects, current_messages, new_message, budget, subject_footer,
    )
    rounds = 0
    while not parts.fits and not budget.emergency:
        _shrink(budget)
        rounds += 1
        parts = _build(
            system_prompt, past_subjects, current_messages, new_message, budget, subject_footer,
        )

    if rounds:
        logger.debug(
            "Fitted prompt in %d round(s): %d/%d tokens, %d messages, "
            "%d subjects, %s compression",
            rounds, parts.total_tokens, budget.usable_context,
            budget.current_message_limit, budget.past_subject_count,
            budget.compression_mode.value,
        )
    if not parts.fits:
        logger.warning(
            "Emergency prompt still exceeds budget: %d tokens > %d usable (window %d)",
            parts.total_tokens, budget.usable_context, context_window,
        )
    return parts


def fit_input(
    prompt: PromptInput,
    context_window: int,
    target_past_subject_count: int = 20,
    target_message_limit: int = 30,
    initial_compression: CompressionMode | str = CompressionMode.BALANCED,
) -> PromptParts:
    """``fit`` for a PromptInput; per-input overrides win over the defaults."""
    return fit(
        system_prompt=prompt.system_prompt,
        past_subjects=prompt.past_subjects,
        current_messages=prompt.current_messages,
        new_message=prompt.new_message,
        context_window=context_window,
        target_past_subject_count=(
            prompt.target_past_subjects
            if prompt.target_past_subjects is not None
            else target_past_subject_count
        ),
        target_message_limit=(
            prompt.target_message_limit
            if prompt.target_message_limit is not None
            else target_message_limit
        ),
        initial_compression=prompt.initial_compression or initial_compression,
        subject_footer=prompt.subject_footer,
    )


@dataclass(frozen=True)
class BudgetStats:
    utilization_percent: float
    shares: dict[str, str]
    status: str  # "healthy" | "tight" | "critical"


def budget_stats(budget: ContextBudget) -> BudgetStats:
    """Utilization of the whole window and each part's planned share."""
    window = budget.context_window or 1
    utilization = budget.total_used / window * 100

    def share(tokens: int) -> str:
        return f"{tokens / window * 100:.1f}%"

    if utilization > 90:
        status = "critical"
    elif utilization > 75:
        status = "tight"
    else:
        status = "healthy"
    return BudgetStats(
        utilization_percent=utilization,
        shares={
            "system": share(budget.system_tokens),
            "past_subjects": share(budget.past_subjects_budget),
            "recent_messages": share(budget.recent_messages_budget),
            "reserved": share(budget.response_reserve),
        },
        status=status,
    )
