"""Guarded auto-checkout: open the selected option's checkout page when the user wants to buy."""
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from .session import Session, get_checkout_url_for_option
from .tools.registry import ToolContext, ToolRegistry, ToolSuccess, execute_tool

log = logging.getLogger(__name__)

ADJUST_TOOL = "adjust_checkout_quantity"
OPEN_TOOL = "open_in_browser"

BuyIntentFn = Callable[[str, str, Session], Union[bool, Awaitable[bool]]]


@dataclass
class AutoCheckoutOutcome:
    did_open: bool
    message: str | None = None
    url: str | None = None


class CheckoutOpenFailed(Exception):
    pass


async def _eval_buy_intent(fn: BuyIntentFn, user_text: str, last_assistant_text: str, session: Session) -> bool:
    try:
        result = fn(user_text, last_assistant_text, session)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        log.debug("Buy-intent predicate raised: %s", e)
        return False
    return result is True


def extract_checkout_url(adjusted: Any, fallback: str) -> str:
    """URL out of an adjust-quantity result (text, dict or ToolResult); `fallback` if there is none."""
    if isinstance(adjusted, ToolSuccess):
        adjusted = adjusted.model_dump()
    elif isinstance(adjusted, str):
        try:
            adjusted = json.loads(adjusted)
        except ValueError:
            return fallback
    if not isinstance(adjusted, dict) or adjusted.get("ok") is False:
        return fallback

    data = adjusted.get("data") if isinstance(adjusted.get("data"), dict) else {}
    for candidate in (data.get("checkout_url"), adjusted.get("checkout_url"), data.get("url"), adjusted.get("url")):
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return fallback


def adjusted_quantity(adjusted: Any, fallback: int) -> int:
    """Quantity the adjust tool actually applied (it may have clamped it)."""
    if isinstance(adjusted, ToolSuccess) and isinstance(adjusted.data, dict):
        qty = adjusted.data.get("quantity")
        if isinstance(qty, int) and not isinstance(qty, bool) and qty > 0:
            return qty
    return fallback


async def try_auto_checkout(
    session: Session,
    user_text: str,
    last_assistant_text: str,
    is_buy_intent: BuyIntentFn,
    registry: ToolRegistry,
    ctx: ToolContext,
) -> AutoCheckoutOutcome:
    """Adjust quantity and open checkout for the selected option, or report that nothing happened."""
    if not await _eval_buy_intent(is_buy_intent, user_text, last_assistant_text, session):
        return AutoCheckoutOutcome(did_open=False)

    if session.selected_option_index is not None and session.selected_quantity is None:
        session.selected_quantity = 1

    index, quantity = session.selected_option_index, session.selected_quantity
    if index is None or quantity is None:
        return AutoCheckoutOutcome(did_open=False)

    checkout_url = get_checkout_url_for_option(session, index)
    if not checkout_url:
        log.info("🛒 Buy intent for option %s but it has no checkout URL", index)
        return AutoCheckoutOutcome(did_open=False)

    log.info("🛒 AUTO-CHECKOUT: option %d x%d", index, quantity)
    try:
        adjusted = await execute_tool(registry, ADJUST_TOOL, {"checkout_url": checkout_url, "quantity": quantity}, ctx)
        final_url = extract_checkout_url(adjusted, checkout_url)
        quantity = adjusted_quantity(adjusted, quantity)

        opened = await execute_tool(registry, OPEN_TOOL, {"url": final_url}, ctx)
        if not opened.ok:
            raise CheckoutOpenFailed(f"{opened.error.code}: {opened.error.message}")
    except Exception as e:
        log.debug("Auto-checkout failed: %s", e)
        return AutoCheckoutOutcome(did_open=False)

    return AutoCheckoutOutcome(
        did_open=True,
        message=f"Opening checkout now for Option {index} (qty {quantity}).",
        url=final_url,
    )
