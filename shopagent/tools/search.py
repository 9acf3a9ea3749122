"""Web search through the Tavily SDK."""
import logging
from typing import Any, Literal

from pydantic import BaseModel, Field
from tavily import AsyncTavilyClient

from .registry import ToolContext, ToolSpec, fail, ok

log = logging.getLogger(__name__)


class WebSearchInput(BaseModel):
    query: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1, le=10)
    depth: Literal["basic", "advanced"] | None = None


def make_search_tools(api_key: str | None = None, client: Any = None) -> list[ToolSpec]:
    """`client` is anything with Tavily's async `search`; built from `api_key` when omitted."""
    tavily = client or AsyncTavilyClient(api_key=api_key)

    async def web_search(ctx: ToolContext, input: WebSearchInput):
        limit = input.limit or 5
        log.info("🔎 TOOL CALL: web_search(query=%s, limit=%d)", input.query, limit)
        try:
            out = await tavily.search(
                query=input.query,
                max_results=limit,
                search_depth=input.depth or "basic",
                include_answer=True,
                include_raw_content=False,
            )
        except Exception as e:
            log.error("❌ TOOL ERROR: web_search failed - %s", str(e))
            return fail("SEARCH_FAILED", str(e))
        if not isinstance(out, dict):
            return fail("SEARCH_FAILED", f"Unexpected search response: {type(out).__name__}")

        results = [
            {
                "title": r.get("title"),
                "url": r.get("url"),
                "snippet": r.get("content"),
                "score": r.get("score"),
            }
            for r in (out.get("results") or [])[:limit]
        ]
        log.info("✅ TOOL SUCCESS: web_search - %d result(s)", len(results))
        return ok({"query": input.query, "answer": out.get("answer"), "results": results})

    return [
        ToolSpec(
            id="web_search",
            description=(
                "Search the web for up-to-date information. Use when the user asks for comparisons, "
                "sources, recent info, or you need to verify something."
            ),
            input=WebSearchInput,
            run=web_search,
        )
    ]
