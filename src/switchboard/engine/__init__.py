"""Dispatch engine: concurrency slots, health tracking and the tool loop."""

from switchboard.engine.concurrency import (
    ConcurrencyManager,
    ConcurrencyPolicy,
    ConcurrencySlot,
    ConcurrencyStats,
    ResourceType,
)
from switchboard.engine.dispatcher import ChatDispatcher, ChatOptions
from switchboard.engine.health import (
    ErrorContext,
    HealthRecord,
    HealthStatus,
    HealthTracker,
    classify_error,
)
from switchboard.engine.tool_loop import ToolInvocation, extract_tool_call

__all__ = [
    "ChatDispatcher",
    "ChatOptions",
    "ConcurrencyManager",
    "ConcurrencyPolicy",
    "ConcurrencySlot",
    "ConcurrencyStats",
    "ErrorContext",
    "HealthRecord",
    "HealthStatus",
    "HealthTracker",
    "ResourceType",
    "ToolInvocation",
    "classify_error",
    "extract_tool_call",
]
