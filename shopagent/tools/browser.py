"""Page reading through a browser MCP server."""
import logging
from typing import Any

from pydantic import BaseModel, Field

from ..core import McpError, mcp_error_message, parse_mcp_text_result, resolve_tool_name
from .registry import ToolContext, ToolSpec, fail, ok

log = logging.getLogger(__name__)

# Different browser servers name their read tool differently
READ_TOOL_CANDIDATES = ["read_page", "browser_read", "read", "fetch", "get_page", "page_read", "open_page"]


class BrowserReadInput(BaseModel):
    url: str = Field(pattern=r"^https?://", description="Absolute http(s) URL to read")


async def make_browser_tools(browser: Any) -> list[ToolSpec]:
    read_tool = await resolve_tool_name(browser, READ_TOOL_CANDIDATES)
    if read_tool is None:
        log.warning("⚠️  Browser MCP exposes no compatible read tool (tried %s)", READ_TOOL_CANDIDATES)

    async def browser_read(ctx: ToolContext, input: BrowserReadInput):
        if read_tool is None:
            return fail("NO_READ_TOOL", "Browser MCP has no compatible read tool (expected something like read_page/read/fetch).")

        log.info("📖 TOOL CALL: browser_read(url=%s) via %s", input.url, read_tool)
        try:
            raw = await browser.call_tool(read_tool, {"url": input.url})
        except (McpError, TimeoutError) as e:
            log.error("❌ TOOL ERROR: browser_read failed - %s", str(e))
            return fail("MCP_CALL_FAILED", f'Browser MCP failed calling "{read_tool}": {e}')

        err = mcp_error_message(raw)
        if err:
            return fail("MCP_ERROR", err)
        try:
            page = parse_mcp_text_result(raw)
        except ValueError:
            page = {}
        if not isinstance(page, dict):
            page = {}

        text = page.get("markdown") or page.get("text") or page.get("content")
        log.debug("browser_read got %d chars", len(text or ""))
        return ok({
            "tool_used": read_tool,
            "url": page.get("url") or input.url,
            "title": page.get("title"),
            "text": text,
        })

    return [
        ToolSpec(
            id="browser_read",
            description="Fetch and extract readable content from a URL (for summarizing / answering questions about a page).",
            input=BrowserReadInput,
            run=browser_read,
        )
    ]
