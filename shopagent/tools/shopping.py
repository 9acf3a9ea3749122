"""Catalog search and checkout-link tools (Shopify catalog MCP)."""
import logging
import re
import time
import webbrowser
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from ..core import McpError, mcp_error_message, parse_mcp_text_result
from ..session import Option, normalize_ships_to
from .registry import ToolContext, ToolSpec, fail, ok

log = logging.getLogger(__name__)

PREFERRED_BULLET_KEYS = (
    "storage", "color", "grade", "condition", "style",
    "size", "model", "capacity", "cover option", "cosmetic condition",
)
_CART_QTY_RE = re.compile(r"/cart/(\d+):(\d+)")
_VARIANT_GID_RE = re.compile(r"ProductVariant/(\d+)")


class ShopifySearchInput(BaseModel):
    query: str = Field(min_length=1, description="What to search for")
    ships_to: str | None = Field(default=None, description="ISO 2-letter destination country, e.g. US, FR, GB")
    max_price_usd: float | None = Field(default=None, description="Optional price ceiling in USD")
    limit: int | None = Field(default=None, ge=1, le=10, description="Max options to return (default 8)")


class CheckoutLinkInput(BaseModel):
    checkout_url: str = Field(min_length=1, description="Checkout/cart URL of the chosen option")
    quantity: int | None = Field(default=None, ge=1, description="Desired quantity")


class OpenInBrowserInput(BaseModel):
    url: str = Field(min_length=1, description="URL to open")


def clamp_quantity(qty: Any, max_quantity: int, fallback: int = 1) -> int:
    try:
        n = int(qty)
    except (TypeError, ValueError):
        return fallback
    if n <= 0:
        return fallback
    return min(n, max_quantity)


def with_quantity_in_checkout_url(checkout_url: str, qty: int) -> str:
    return _CART_QTY_RE.sub(lambda m: f"/cart/{m.group(1)}:{qty}", checkout_url, count=1)


def host_from_url(url: str | None) -> str | None:
    if not url:
        return None
    host = urlparse(url).netloc
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host


def format_money(amount: float | None, currency: str | None) -> str | None:
    if amount is None:
        return None
    cur = (currency or "USD").upper()
    return f"${amount:.2f}" if cur == "USD" else f"{amount:.2f} {cur}"


def infer_condition(title: str, options: dict[str, str]) -> str | None:
    t = (title or "").lower()
    opt_text = " ".join(f"{k}:{v}" for k, v in options.items()).lower()
    for needle, label in (("refurb", "Refurbished"), ("open box", "Open box"), ("used", "Used"), ("new", "New")):
        if needle in t or needle in opt_text:
            return label
    return None


def pick_key_bullets(options: dict[str, str]) -> list[str]:
    normalized = [(str(k).strip(), str(v).strip()) for k, v in options.items()]
    picked = []
    for key in PREFERRED_BULLET_KEYS:
        found = next((kv for kv in normalized if kv[0].lower() == key), None)
        if found:
            picked.append(found)
        if len(picked) >= 3:
            break
    if not picked:
        picked = normalized[:2]
    return [f"{k}: {v}" for k, v in picked if k and v]


def flatten_offers(payload: dict, limit_products: int = 10, limit_variants: int = 10) -> list[dict]:
    """Catalog `offers[].variants[]` -> flat list of variant dicts with the fields cards need."""
    variants = []
    for offer in (payload.get("offers") or [])[:limit_products]:
        title = offer.get("title") or "Untitled product"
        for v in (offer.get("variants") or [])[:limit_variants]:
            price = v.get("price") or {}
            amount = price.get("amount")
            gid = v.get("id")
            m = _VARIANT_GID_RE.search(str(gid or ""))
            variants.append({
                "title": v.get("displayName") or title,
                "variant_id": int(m.group(1)) if m else None,
                "shop_url": (v.get("shop") or {}).get("onlineStoreUrl"),
                "price": amount / 100 if isinstance(amount, (int, float)) else None,
                "currency": price.get("currency"),
                "options": {o.get("name"): o.get("value") for o in v.get("options") or [] if o.get("name")},
                "variant_url": v.get("variantUrl"),
                "checkout_url": v.get("checkoutUrl"),
            })
    return variants


def to_option(variant: dict, option_index: int) -> Option:
    opts = variant.get("options") or {}
    bullets = pick_key_bullets(opts)
    condition = infer_condition(variant["title"], opts) or opts.get("Condition")
    if condition and not any(b.lower().startswith("condition:") for b in bullets):
        bullets.insert(0, f"Condition: {condition}")
    return Option(
        option_index=option_index,
        title=variant["title"],
        variant_id=variant.get("variant_id"),
        price=format_money(variant.get("price"), variant.get("currency")),
        currency=variant.get("currency"),
        seller=host_from_url(variant.get("shop_url")),
        bullets=tuple(bullets[:3]),
        product_url=variant.get("variant_url"),
        checkout_url=variant.get("checkout_url"),
    )


def make_shopping_tools(catalog: Any, max_quantity: int = 10) -> list[ToolSpec]:
    """Return the catalog/checkout tool specs. `catalog` is an MCP client (stdio or HTTP)."""

    async def shopify_search(ctx: ToolContext, input: ShopifySearchInput):
        ships_to_raw = (input.ships_to or "").strip()
        if not ships_to_raw:
            return fail("MISSING_SHIPS_TO", "Missing ships_to. Ask user where it should ship (US/FR/GB/etc).")
        ships_to = normalize_ships_to(ships_to_raw)
        limit = input.limit or 8

        start_time = time.time()
        log.info("🔍 TOOL CALL: shopify_search(query=%s, ships_to=%s)", input.query, ships_to)
        try:
            raw = await catalog.call_tool("search_global_products", {
                "query": input.query,
                "ships_to": ships_to,
                "max_price": input.max_price_usd,
                "limit": 10,
                "available_for_sale": True,
                "include_secondhand": False,
                "context": ctx.env.get("DEFAULT_CONTEXT", ""),
            })
        except (McpError, TimeoutError) as e:
            log.error("❌ TOOL ERROR: shopify_search failed - %s", str(e))
            return fail("MCP_CALL_FAILED", str(e))

        err = mcp_error_message(raw)
        if err:
            return fail("MCP_ERROR", err)
        try:
            payload = parse_mcp_text_result(raw)
        except ValueError as e:
            return fail("BAD_RESPONSE", f"Catalog returned unreadable content: {e}")

        variants = flatten_offers(payload if isinstance(payload, dict) else {})[:limit]
        options = [to_option(v, idx) for idx, v in enumerate(variants, 1)]
        log.info("✅ TOOL SUCCESS: shopify_search - %d option(s) (took %.2fs)", len(options), time.time() - start_time)
        log.debug("Options: %s", [o.title for o in options])
        return ok({
            "ships_to": ships_to,
            "query": input.query,
            "options": [o.model_dump() for o in options],
        })

    async def adjust_checkout_quantity(ctx: ToolContext, input: CheckoutLinkInput):
        limit = ctx.env.get("MAX_QUANTITY", max_quantity)
        qty = clamp_quantity(input.quantity or 1, limit)
        if input.quantity and qty != input.quantity:
            log.debug("Quantity clamped: %d -> %d (max=%d)", input.quantity, qty, limit)
        return ok({
            "checkout_url": with_quantity_in_checkout_url(input.checkout_url, qty),
            "quantity": qty,
        })

    async def open_in_browser(ctx: ToolContext, input: OpenInBrowserInput):
        if not ctx.env.get("AUTO_OPEN_CHECKOUT", True):
            return fail("AUTO_OPEN_DISABLED", "AUTO_OPEN_CHECKOUT is disabled.")
        url = input.url.strip()
        log.info("🌐 Opening in browser: %s", url)
        # Fire-and-forget; the browser process is not awaited
        opened = webbrowser.open(url, new=2)
        return ok({"opened": bool(opened), "url": url})

    return [
        ToolSpec(
            id="shopify_search",
            description="Search Shopify global catalog for products available to ship to a country.",
            input=ShopifySearchInput,
            run=shopify_search,
        ),
        ToolSpec(
            id="adjust_checkout_quantity",
            description=(
                "Adjust a Shopify checkout/cart URL to set the desired quantity (best-effort). "
                "Use when user wants 2+ items and you already have a checkout_url."
            ),
            input=CheckoutLinkInput,
            run=adjust_checkout_quantity,
        ),
        ToolSpec(
            id="open_in_browser",
            description=(
                "Open a URL in the user's default browser. Use only after user asks to open it, "
                "or after user chose an option and asked to proceed."
            ),
            input=OpenInBrowserInput,
            run=open_in_browser,
        ),
    ]
