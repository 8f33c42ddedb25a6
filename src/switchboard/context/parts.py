"""Four-part prompt structure.

Part 1 is the stable system prompt, part 2 the past-subject summaries
(both cacheable), part 3 the recent messages of the active conversation
(conditionally cacheable) and part 4 the new user message (never cached).
Every part carries its own token estimate; cacheable parts carry a key
that changes only when their content changes.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace

from switchboard.context.compression import CompressionMode
from switchboard.context.tokens import estimate_message_tokens, estimate_tokens

RESPONSE_RESERVE_RATIO = 0.25
PAST_SUBJECT_SHARE = 0.2
RECENT_MESSAGE_SHARE = 0.8


def cache_key(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@dataclass
class ContextBudget:
    """Planning record for one fit. Mutated only by the fit loop."""

    context_window: int
    response_reserve: int
    system_tokens: int
    past_subjects_budget: int
    recent_messages_budget: int
    past_subject_count: int
    current_message_limit: int
    compression_mode: CompressionMode = CompressionMode.BALANCED
    total_used: int = 0
    remaining: int = 0
    emergency: bool = False

    @classmethod
    def create(
        cls,
        context_window: int,
        system_tokens: int,
        target_past_subjects: int = 20,
        target_message_limit: int = 30,
        compression_mode: CompressionMode | str = CompressionMode.BALANCED,
    ) -> ContextBudget:
        reserve = int(context_window * RESPONSE_RESERVE_RATIO)
        after_system = max(0, context_window - reserve - system_tokens)
        return cls(
            context_window=context_window,
            response_reserve=reserve,
            system_tokens=system_tokens,
            past_subjects_budget=int(after_system * PAST_SUBJECT_SHARE),
            recent_messages_budget=int(after_system * RECENT_MESSAGE_SHARE),
            past_subject_count=target_past_subjects,
            current_message_limit=target_message_limit,
            compression_mode=CompressionMode(compression_mode),
            total_used=system_tokens,
            remaining=after_system,
        )

    @property
    def usable_context(self) -> int:
        return self.context_window - self.response_reserve

    def account(self, total_tokens: int) -> None:
        self.total_used = total_tokens
        self.remaining = self.usable_context - total_tokens


@dataclass(frozen=True)
class SystemPart:
    content: str
    tokens: int
    cache_key: str
    cacheable: bool = True

    @classmethod
    def build(cls, content: str) -> SystemPart:
        return cls(content=content, tokens=estimate_tokens(content), cache_key=cache_key(content))


@dataclass(frozen=True)
class PastSubjectsPart:
    content: str
    tokens: int
    cache_key: str
    subject_ids: tuple[str, ...] = ()
    cacheable: bool = True

    @classmethod
    def build(cls, content: str, subject_ids: list[str]) -> PastSubjectsPart:
        return cls(
            content=content,
            tokens=estimate_tokens(content),
            cache_key=cache_key(",".join(subject_ids)),
            subject_ids=tuple(subject_ids),
        )


@dataclass(frozen=True)
class RecentMessagesPart:
    messages: list[dict]
    tokens: int
    cache_key: str
    cacheable: bool = False

    @classmethod
    def build(cls, messages: list[dict], cacheable: bool = False) -> RecentMessagesPart:
        messages = [dict(m) for m in messages]
        return cls(
            messages=messages,
            tokens=estimate_message_tokens(messages),
            cache_key=cache_key(json.dumps(messages, ensure_ascii=False)),
            cacheable=cacheable,
        )


@dataclass(frozen=True)
class NewMessagePart:
    content: str
    tokens: int
    cacheable: bool = False

    @classmethod
    def build(cls, content: str) -> NewMessagePart:
        return cls(content=content, tokens=estimate_tokens(content))


@dataclass
class PromptParts:
    """A fitted (or caller-supplied) prompt ready for an adapter."""

    system: SystemPart
    past_subjects: PastSubjectsPart
    recent_messages: RecentMessagesPart
    new_message: NewMessagePart
    budget: ContextBudget | None = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        system_prompt: str,
        new_message: str,
        recent_messages: list[dict] | None = None,
        past_subjects_text: str = "",
        subject_ids: list[str] | None = None,
        budget: ContextBudget | None = None,
    ) -> PromptParts:
        parts = cls(
            system=SystemPart.build(system_prompt),
            past_subjects=PastSubjectsPart.build(past_subjects_text, subject_ids or []),
            recent_messages=RecentMessagesPart.build(recent_messages or []),
            new_message=NewMessagePart.build(new_message),
            budget=budget,
        )
        if budget is not None:
            budget.account(parts.total_tokens)
        return parts

    @classmethod
    def from_messages(cls, messages: list[dict]) -> PromptParts:
        """Split a flat chat history into parts without budgeting.

        Leading system messages become part 1, a trailing user message
        becomes part 4, and everything between is part 3.
        """
        messages = list(messages)
        system_lines: list[str] = []
        while messages and messages[0].get("role") == "system":
            system_lines.append(str(messages.pop(0).get("content", "")))
        new_message = ""
        if messages and messages[-1].get("role") == "user":
            new_message = str(messages.pop().get("content", ""))
        return cls.build(
            system_prompt="\n\n".join(system_lines),
            new_message=new_message,
            recent_messages=messages,
        )

    @property
    def total_tokens(self) -> int:
        return (
            self.system.tokens
            + self.past_subjects.tokens
            + self.recent_messages.tokens
            + self.new_message.tokens
        )

    @property
    def fits(self) -> bool:
        """False only when a budget exists and the prompt exceeds it."""
        if self.budget is None:
            return True
        return self.total_tokens <= self.budget.usable_context

    def with_follow_up(self, assistant_text: str, user_text: str) -> PromptParts:
        """Append the assistant reply and a new user turn, keeping parts 1-2."""
        messages = list(self.recent_messages.messages)
        if self.new_message.content:
            messages.append({"role": "user", "content": self.new_message.content})
        messages.append({"role": "assistant", "content": assistant_text})
        budget = replace(self.budget) if self.budget is not None else None
        follow_up = replace(
            self,
            recent_messages=RecentMessagesPart.build(
                messages, cacheable=self.recent_messages.cacheable,
            ),
            new_message=NewMessagePart.build(user_text),
            budget=budget,
            metadata=dict(self.metadata),
        )
        if budget is not None:
            budget.account(follow_up.total_tokens)
        return follow_up
