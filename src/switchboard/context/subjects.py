"""Past-subject summaries.

Each earlier subject of a conversation is rendered as one summary line
whose density follows the compression ladder. The rendered block forms
the second, slowly-changing part of the prompt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from switchboard.context.compression import (
    COMPRESSION_LADDER,
    CompressionMode,
)
from switchboard.context.tokens import estimate_tokens

DEFAULT_ABSTRACTION_LEVEL = 20
DESCRIPTION_LIMIT = 100
RICH_KEYWORD_LIMIT = 5

_LEVEL_NAMES: list[tuple[int, str]] = [
    (5, "Atomic/Technical"),
    (10, "Technical Patterns"),
    (15, "Design Patterns"),
    (20, "Methodologies"),
    (25, "Concepts"),
    (30, "Abstract Thinking"),
    (35, "Philosophy"),
    (40, "Epistemology/Metaphysics"),
]


def level_name(level: int) -> str:
    """Human-readable name for an abstraction level."""
    for ceiling, name in _LEVEL_NAMES:
        if level <= ceiling:
            return name
    return "Existential"


@dataclass(frozen=True)
class PastSubject:
    """A finished subject of the conversation, as supplied by the caller."""

    id: str
    name: str = ""
    description: str = ""
    keywords: tuple[str, ...] = ()
    message_count: int = 0
    abstraction_level: int = DEFAULT_ABSTRACTION_LEVEL

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PastSubject:
        keywords = []
        for keyword in data.get("keywords") or []:
            # Keyword objects carry their text under "term"
            if isinstance(keyword, dict):
                keyword = keyword.get("term", "")
            if keyword:
                keywords.append(str(keyword))
        level = data.get("abstraction_level", data.get("abstractionLevel"))
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            description=str(data.get("description") or ""),
            keywords=tuple(keywords),
            message_count=int(data.get("message_count", data.get("messageCount", 0)) or 0),
            abstraction_level=int(level) if level is not None else DEFAULT_ABSTRACTION_LEVEL,
        )


@dataclass(frozen=True)
class SubjectSummary:
    subject_id: str
    text: str
    tokens: int
    mode: CompressionMode


@dataclass
class SummaryBatch:
    summaries: list[SubjectSummary] = field(default_factory=list)
    total_tokens: int = 0
    mode: CompressionMode = CompressionMode.BALANCED


def _rich(subject: PastSubject, name: str, level: int) -> str:
    lines = [f"{name} (level {level}: {level_name(level)})"]
    if subject.description:
        description = subject.description
        if len(description) > DESCRIPTION_LIMIT:
            description = description[:DESCRIPTION_LIMIT - 3] + "..."
        lines.append(f'  Description: "{description}"')
    if subject.keywords:
        lines.append(f"  Keywords: {', '.join(subject.keywords[:RICH_KEYWORD_LIMIT])}")
    lines.append(f"  {subject.message_count} messages")
    return "\n".join(lines)


def summarize_subject(
    subject: PastSubject,
    mode: CompressionMode | str = CompressionMode.BALANCED,
) -> SubjectSummary:
    mode = CompressionMode(mode)
    name = subject.name or "Unknown Subject"
    level = subject.abstraction_level
    primary_keyword = subject.keywords[0] if subject.keywords else name.lower()

    if mode is CompressionMode.RICH:
        text = _rich(subject, name, level)
    elif mode is CompressionMode.MINIMAL:
        text = f"{level}: {primary_keyword}"
    elif mode is CompressionMode.EXTREME:
        text = str(level)
    else:
        text = f"{level}: {name}"

    return SubjectSummary(
        subject_id=subject.id, text=text, tokens=estimate_tokens(text), mode=mode,
    )


def summarize_subjects(
    subjects: list[PastSubject],
    token_budget: int,
    mode: CompressionMode | str = CompressionMode.BALANCED,
) -> SummaryBatch:
    """Summarize at ``mode``, moving down the ladder until under budget.

    The last rung is returned even when it still exceeds the budget.
    """
    index = COMPRESSION_LADDER.index(CompressionMode(mode))
    while True:
        current = COMPRESSION_LADDER[index]
        summaries = [summarize_subject(s, current) for s in subjects]
        total = sum(s.tokens for s in summaries)
        if total <= token_budget or index == len(COMPRESSION_LADDER) - 1:
            return SummaryBatch(summaries=summaries, total_tokens=total, mode=current)
        index += 1


def format_past_subjects(
    subjects: list[PastSubject],
    token_budget: int,
    mode: CompressionMode | str = CompressionMode.BALANCED,
    footer: str = "",
) -> str:
    """Render the past-subjects block; empty string when there are none."""
    if not subjects:
        return ""
    batch = summarize_subjects(subjects, token_budget, mode)
    lines = [f"Past subjects ({len(subjects)}) [{batch.mode.value} mode]:"]
    lines.extend(f"- {s.text}" for s in batch.summaries)
    if footer:
        lines.extend(["", footer])
    return "\n".join(lines)


def compression_stats(subjects: list[PastSubject]) -> dict[str, Any]:
    """Token cost of the same subjects at every compression mode."""
    totals = {
        mode.value: sum(summarize_subject(s, mode).tokens for s in subjects)
        for mode in COMPRESSION_LADDER
    }
    rich = totals[CompressionMode.RICH.value]

    def ratio(tokens: int) -> str:
        if not rich:
            return "0.0%"
        return f"{tokens / rich * 100:.1f}%"

    totals["ratios"] = {
        "balanced_vs_rich": ratio(totals[CompressionMode.BALANCED.value]),
        "minimal_vs_rich": ratio(totals[CompressionMode.MINIMAL.value]),
        "extreme_vs_rich": ratio(totals[CompressionMode.EXTREME.value]),
    }
    return totals
