"""Tool system: registration and execution of tools models may call."""

from switchboard.tools.registry import Tool as Tool
from switchboard.tools.registry import ToolContext as ToolContext
from switchboard.tools.registry import ToolExecutor as ToolExecutor
from switchboard.tools.registry import ToolRegistry as ToolRegistry
from switchboard.tools.registry import ToolResult as ToolResult
