"""Tool invocations embedded in model output.

A model asks for a tool by writing ``{"tool": <name>, "parameters": {...}}``
somewhere in its reply, optionally inside a code fence. Fenced blocks win;
otherwise the first parseable object that encloses a ``"tool"`` key is
taken, found by walking back to an opening brace and counting braces
forward while skipping string contents.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

MAX_TOOL_ROUND_TRIPS = 1

_FENCED_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", re.IGNORECASE)
_TOOL_KEY_RE = re.compile(r'"tool"\s*:')


@dataclass(frozen=True)
class ToolInvocation:
    tool: str
    parameters: dict = field(default_factory=dict)
    start: int = 0
    end: int = 0  # exclusive; covers the fence when the call was fenced
    raw: str = ""

    def strip_from(self, text: str) -> str:
        """``text`` with the invocation removed."""
        before = text[:self.start].rstrip()
        after = text[self.end:].lstrip()
        if before and after:
            return f"{before}\n\n{after}"
        return before or after


def _as_invocation(raw: str, start: int, end: int) -> ToolInvocation | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or not isinstance(parsed.get("tool"), str):
        return None
    parameters = parsed.get("parameters", {})
    if parameters is None:
        parameters = {}
    if not isinstance(parameters, dict) or not parsed["tool"].strip():
        return None
    return ToolInvocation(
        tool=parsed["tool"].strip(), parameters=parameters, start=start, end=end, raw=raw,
    )


def match_closing_brace(text: str, start: int) -> int | None:
    """Index of the brace closing ``text[start]``, or None if unbalanced."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def _find_fenced(text: str) -> ToolInvocation | None:
    for match in _FENCED_RE.finditer(text):
        invocation = _as_invocation(match.group(1), match.start(), match.end())
        if invocation is not None:
            return invocation
    return None


def _find_bare(text: str) -> ToolInvocation | None:
    for key in _TOOL_KEY_RE.finditer(text):
        opening = text.rfind("{", 0, key.start())
        while opening != -1:
            closing = match_closing_brace(text, opening)
            if closing is not None and closing > key.start():
                invocation = _as_invocation(text[opening:closing + 1], opening, closing + 1)
                if invocation is not None:
                    return invocation
            opening = text.rfind("{", 0, opening)
    return None


def extract_tool_call(text: str) -> ToolInvocation | None:
    if not text or '"tool"' not in text:
        return None
    return _find_fenced(text) or _find_bare(text)


def build_tool_result_prompt(tool: str, result_text: str) -> str:
    """Synthetic user turn that feeds a tool result back to the model."""
    return (
        f"Tool result from {tool}:\n\n{result_text}\n\n"
        "Please respond naturally to the user based on this information. "
        "Do not call any more tools, just provide a conversational response."
    )
