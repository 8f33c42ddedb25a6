"""Tool registry and execution.

Tools are invoked by name from model output. Execution is bounded by a
per-tool timeout; failures come back as ``ToolResult.fail`` so the model
can tell the user what went wrong.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from switchboard.exceptions import ToolError

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    """Result of a tool execution."""

    success: bool
    output: str = ""
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, output: str = "", **kwargs) -> ToolResult:
        return cls(success=True, output=output, **kwargs)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)


@dataclass
class ToolContext:
    """Context passed to tool execution."""

    topic_id: str = ""
    model_id: str = ""
    metadata: dict = field(default_factory=dict)


class ToolExecutor(ABC):
    """What the dispatcher needs from a tool system."""

    @abstractmethod
    async def execute(self, name: str, params: dict, context: ToolContext) -> ToolResult:
        ...

    def format_result_for_llm(self, result: ToolResult) -> str:
        """Render a result as the text fed back to the model."""
        if not result.success:
            return f"Error: {result.error or 'unknown error'}"
        payload = result.data if result.data is not None else result.output
        if payload is None or payload == "":
            return "Operation completed successfully"
        if isinstance(payload, str):
            return payload
        return json.dumps(payload, indent=2, ensure_ascii=False, default=str)


class Tool(ABC):
    """Abstract base class for all tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict:
        """JSON Schema for parameters."""
        ...

    @property
    def timeout_seconds(self) -> int:
        return 30

    @abstractmethod
    async def execute(self, args: dict, ctx: ToolContext) -> ToolResult:
        ...

    def schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class ToolRegistry(ToolExecutor):
    """Registry for tool registration and dispatch."""

    def __init__(self, default_timeout: int | None = None) -> None:
        """``default_timeout`` caps every tool's own timeout."""
        self._tools: dict[str, Tool] = {}
        self._default_timeout = default_timeout

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ToolError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[str]:
        return sorted(self._tools)

    def all_schemas(self) -> list[dict]:
        return [tool.schema() for tool in self._tools.values()]

    def describe_for_prompt(self) -> str:
        """Tool list and call format, for inclusion in a system prompt."""
        if not self._tools:
            return ""
        lines = [
            "You can call one tool by replying with a JSON object:",
            '{"tool": "<name>", "parameters": {...}}',
            "",
            "Available tools:",
        ]
        for tool in self._tools.values():
            lines.append(f"- {tool.name}: {tool.description}")
            lines.append(f"  parameters: {json.dumps(tool.parameters, ensure_ascii=False)}")
        return "\n".join(lines)

    async def execute(
        self, name: str, params: dict, context: ToolContext | None = None,
    ) -> ToolResult:
        """Execute a tool by name with timeout and context."""
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.fail(f"Unknown tool: {name}")
        timeout = tool.timeout_seconds
        if self._default_timeout is not None:
            timeout = min(timeout, self._default_timeout)
        try:
            return await asyncio.wait_for(
                tool.execute(params, context or ToolContext()), timeout=timeout,
            )
        except TimeoutError:
            return ToolResult.fail(f"Tool '{name}' timed out after {timeout}s")
        except Exception as e:
            logger.warning("Tool %s raised %s: %s", name, type(e).__name__, e)
            return ToolResult.fail(f"Tool error: {type(e).__name__}: {e}")
