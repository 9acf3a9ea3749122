"""Shared utilities for MCP tool result parsing and loose JSON handling."""
import json
import re
from typing import Any
from urllib.parse import urlparse


def parse_mcp_text_result(result: dict, key: str | None = None) -> Any:
    """Parse MCP tools/call result: content[0].text as JSON.
    If key is set, return data[key]; otherwise return the full parsed data.
    Raises ValueError if result is missing content or text.
    """
    if not result or "content" not in result or not result["content"]:
        raise ValueError("MCP result missing content")
    raw = result["content"][0].get("text")
    if raw is None:
        raise ValueError("MCP result content missing text")
    data = json.loads(raw)
    return data.get(key) if key is not None else data


def mcp_error_message(result: Any) -> str | None:
    """Return the error text of an `isError` MCP result, or None for a normal result."""
    if not isinstance(result, dict):
        return None
    inner = result.get("result") if isinstance(result.get("result"), dict) else {}
    if not (result.get("isError") or inner.get("isError")):
        return None
    content = result.get("content") or inner.get("content")
    if isinstance(content, list):
        msg = "\n".join(c.get("text", "") for c in content if isinstance(c, dict) and c.get("text"))
        return msg or "Unknown MCP error"
    return "Unknown MCP error"


def safe_json_parse(text: str) -> Any | None:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def extract_json_object(text: str) -> str | None:
    """Slice from the first '{' to the last '}' (drops chatter around a JSON reply)."""
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        return None
    return text[start:end + 1]


_URL_RE = re.compile(r"\bhttps?://[^\s)<>\"']+", re.IGNORECASE)


def extract_urls(text: str) -> list[str]:
    """All http(s) URLs in `text`, trailing punctuation stripped, first-seen order."""
    out: list[str] = []
    for raw in _URL_RE.findall(text or ""):
        url = raw.rstrip(".,;:!?")
        if url not in out:
            out.append(url)
    return out


def is_likely_checkout_url(url: str) -> bool:
    """Cart/checkout links: path has /cart/, or the query carries a checkout/payment marker."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    path = parsed.path.lower()
    query = parsed.query.lower()
    return "/cart/" in path or "payment=shop_pay" in query or "checkout" in query
