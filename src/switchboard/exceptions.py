"""Switchboard exception hierarchy.

Callers distinguish input mistakes (never retried) from dispatch
failures (which carry an ErrorContext describing health and failover
candidates) and from cancellations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from switchboard.engine.health import ErrorContext


class SwitchboardError(Exception):
    """Base for all Switchboard exceptions."""


class InputError(SwitchboardError):
    """Invalid request: missing model id, malformed prompt input."""


class ModelNotFoundError(InputError):
    """Raised when a model id is not registered in the catalog."""

    def __init__(self, model_id: str, available: list[str] | None = None):
        self.model_id = model_id
        self.available = list(available or [])
        hint = ", ".join(self.available) if self.available else "none"
        super().__init__(f"Model {model_id!r} not found. Available: {hint}")


class AdapterError(SwitchboardError):
    """No adapter can serve a descriptor, or an adapter was misused."""


class ModelConnectionError(AdapterError):
    """Raised when a backend call fails due to network or server issues.

    Wraps the underlying httpx/transport error with a readable message
    and preserves the original exception for debugging.
    """

    def __init__(self, message: str, original: Exception | None = None):
        super().__init__(message)
        self.original = original


class DispatchError(SwitchboardError):
    """A backend call failed. ``context`` says what to try next."""

    def __init__(self, message: str, context: ErrorContext):
        super().__init__(message)
        self.context = context


class ChatCancelledError(SwitchboardError):
    """The call was cancelled through its topic id."""

    def __init__(self, topic_id: str):
        super().__init__(f"Chat cancelled for topic {topic_id!r}")
        self.topic_id = topic_id


class ToolError(SwitchboardError):
    """Tool lookup or execution failures."""
