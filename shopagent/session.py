"""Per-conversation shopping state and folding of catalog search results into it."""
import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

log = logging.getLogger(__name__)

PLANNER_OPTION_LIMIT = 8


class Option(BaseModel):
    """One buyable variant from a catalog search, numbered from 1 within that search."""

    model_config = ConfigDict(frozen=True)

    option_index: int = Field(ge=1)
    title: str
    variant_id: int | str | None = None
    price: str | None = None
    currency: str | None = None
    seller: str | None = None
    bullets: tuple[str, ...] = ()
    product_url: str | None = None
    checkout_url: str | None = None


class Session(BaseModel):
    """Mutable shopping state for one conversation.

    `selected_option_index` always points at an entry of the current
    `last_options`; `replace_options` clears the selection for that reason.
    """

    last_ships_to: str | None = None
    last_query: str | None = None
    last_options: list[Option] = Field(default_factory=list)
    selected_option_index: int | None = None
    selected_quantity: int | None = None

    def replace_options(self, options: list[Option], query: str | None, ships_to: str | None) -> None:
        self.last_options = list(options)
        self.last_query = query
        if ships_to:
            self.last_ships_to = normalize_ships_to(ships_to)
        self.clear_selection()

    def clear_selection(self) -> None:
        self.selected_option_index = None
        self.selected_quantity = None

    def has_option(self, index: int | None) -> bool:
        return index is not None and any(o.option_index == index for o in self.last_options)


def normalize_ships_to(value: str) -> str:
    v = (value or "").strip().upper()
    if v in ("FRANCE", "FRA"):
        return "FR"
    if v in ("UNITED STATES", "UNITED STATES OF AMERICA", "USA"):
        return "US"
    if v in ("UK", "UNITED KINGDOM", "GREAT BRITAIN"):
        return "GB"
    return v


def _unwrap_tool_result(obj: Any) -> Any:
    # {"ok": true, "data": {...}} -> {"ok": true, ...data}
    if isinstance(obj, dict) and obj.get("ok") is True and isinstance(obj.get("data"), dict):
        return {"ok": True, **obj["data"]}
    return obj


def parse_search_result(raw_text: str) -> dict | None:
    """Decode a catalog search result in either the flat or the wrapped shape."""
    try:
        raw = json.loads(raw_text)
    except (TypeError, ValueError):
        return None
    obj = _unwrap_tool_result(raw)
    if not isinstance(obj, dict) or not isinstance(obj.get("ok"), bool):
        return None
    return obj


def update_session_from_search_result(session: Session, raw_text: str) -> bool:
    """Fold a serialized catalog search result into `session`.

    Only a success carrying an `options` list touches the session; it then
    replaces the options wholesale (even with an empty list) and clears the
    selection. Returns True when the session was updated.
    """
    parsed = parse_search_result(raw_text)
    if not parsed or parsed["ok"] is not True or not isinstance(parsed.get("options"), list):
        log.debug("Search result not folded into session: %s", (raw_text or "")[:200])
        return False

    options: list[Option] = []
    for entry in parsed["options"]:
        try:
            options.append(Option.model_validate(entry))
        except ValidationError as e:
            log.warning("Dropping malformed option from search result: %s", e.errors()[:1])

    session.replace_options(options, parsed.get("query"), parsed.get("ships_to"))
    log.info("🧾 Session updated: %d option(s) for query=%r ships_to=%s", len(options), session.last_query, session.last_ships_to)
    return True


def get_checkout_url_for_option(session: Session, index: int | None) -> str | None:
    """Checkout URL of option `index` in the current results, if that option exists."""
    if index is None:
        return None
    for option in session.last_options:
        if option.option_index == index:
            return option.checkout_url
    return None


def _dedupe_key(option: Option) -> str:
    return "::".join([
        option.title.strip().lower(),
        (option.price or "").strip().lower(),
        (option.seller or "").strip().lower(),
        "|".join(option.bullets[:2]).strip().lower(),
    ])


def summarize_options_for_planner(options: list[Option], limit: int = PLANNER_OPTION_LIMIT) -> str:
    """Display-only one-line-per-option summary (deduplicated, capped) for planner prompts."""
    if not options:
        return "(none)"

    seen: set[str] = set()
    lines: list[str] = []
    for option in options:
        key = _dedupe_key(option)
        if key in seen:
            continue
        seen.add(key)
        line = f"Option {option.option_index}: {option.title} — {option.price}"
        if option.seller:
            line += f" — seller: {option.seller}"
        bullets = "; ".join(option.bullets[:2])
        if bullets:
            line += f" — {bullets}"
        lines.append(line)
        if len(lines) >= limit:
            break
    return "\n".join(lines)
