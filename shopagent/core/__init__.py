"""Core MCP clients and utilities."""
from .mcp_client import HttpMcpClient, McpClient, McpError, resolve_tool_name
from .utils import (
    extract_json_object,
    extract_urls,
    is_likely_checkout_url,
    mcp_error_message,
    parse_mcp_text_result,
    safe_json_parse,
)

__all__ = [
    "HttpMcpClient",
    "McpClient",
    "McpError",
    "extract_json_object",
    "extract_urls",
    "is_likely_checkout_url",
    "mcp_error_message",
    "parse_mcp_text_result",
    "resolve_tool_name",
    "safe_json_parse",
]
