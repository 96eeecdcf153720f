"""Tools package for Burrow."""

from burrow.tools.planning import PLANNING_TOOL_NAME, create_planning_tool
from burrow.tools.registry import ToolDescriptor, ToolRegistry, ToolResult
from burrow.tools.shell import SHELL_TOOL_NAME, create_shell_tool

__all__ = [
    "PLANNING_TOOL_NAME",
    "SHELL_TOOL_NAME",
    "ToolDescriptor",
    "ToolRegistry",
    "ToolResult",
    "create_planning_tool",
    "create_shell_tool",
]
