"""Provider-shaped rendering of prompt parts.

Formatters only rearrange parts; they never re-budget.
"""

from __future__ import annotations

from switchboard.context.parts import PromptParts

EPHEMERAL = {"type": "ephemeral"}


def format_standard(parts: PromptParts) -> dict:
    """One system message (parts 1 and 2), then parts 3 and 4 as chat turns.

    For backends without native prompt caching.
    """
    messages: list[dict] = []
    system = "\n\n".join(
        text for text in (parts.system.content, parts.past_subjects.content) if text
    )
    if system:
        messages.append({"role": "system", "content": system})
    messages.extend(dict(m) for m in parts.recent_messages.messages)
    if parts.new_message.content:
        messages.append({"role": "user", "content": parts.new_message.content})
    return {"messages": messages}


def format_with_cache_blocks(parts: PromptParts, cache_recent: bool = False) -> dict:
    """Parts 1 and 2 as separate cache-annotated system blocks.

    System-role turns inside part 3 are dropped since the flat message list
    only carries user and assistant turns. With ``cache_recent`` the last
    recent message is annotated too, so an unchanged history is served
    from cache.
    """
    system: list[dict] = []
    if parts.system.content:
        system.append({
            "type": "text",
            "text": parts.system.content,
            "cache_control": dict(EPHEMERAL),
        })
    if parts.past_subjects.content.strip():
        system.append({
            "type": "text",
            "text": parts.past_subjects.content,
            "cache_control": dict(EPHEMERAL),
        })

    messages: list[dict] = [
        {"role": m["role"], "content": m.get("content", "")}
        for m in parts.recent_messages.messages
        if m.get("role") != "system"
    ]
    if cache_recent and messages and isinstance(messages[-1]["content"], str):
        last = messages[-1]
        last["content"] = [{
            "type": "text",
            "text": last["content"],
            "cache_control": dict(EPHEMERAL),
        }]
    if parts.new_message.content:
        messages.append({"role": "user", "content": parts.new_message.content})
    return {"system": system, "messages": messages}
