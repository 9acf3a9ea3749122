"""Tool registry and tool factories for the shopping agent."""
from .browser import make_browser_tools
from .registry import (
    ToolContext,
    ToolError,
    ToolFailure,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    ToolSuccess,
    execute_tool,
    fail,
    ok,
    tool_result_to_string,
)
from .search import make_search_tools
from .shopping import make_shopping_tools

__all__ = [
    "ToolContext",
    "ToolError",
    "ToolFailure",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "ToolSuccess",
    "execute_tool",
    "fail",
    "make_browser_tools",
    "make_search_tools",
    "make_shopping_tools",
    "ok",
    "tool_result_to_string",
]
