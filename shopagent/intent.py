"""What the user meant: option/quantity selection, buy intent, and link opening."""
import logging
import re

from .core import extract_json_object, safe_json_parse
from .llm import ChatClient
from .session import Session, get_checkout_url_for_option

log = logging.getLogger(__name__)

MAX_PARSED_QUANTITY = 20

_ORDINALS = {
    "first": 1, "1st": 1,
    "second": 2, "2nd": 2,
    "third": 3, "3rd": 3,
    "fourth": 4, "4th": 4,
    "fifth": 5, "5th": 5,
}
_NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}

_OPTION_RE = re.compile(r"\boption\s*#?\s*(\d{1,2})\b")
_LONE_NUMBER_RE = re.compile(r"^\s*(\d{1,2})\s*[.!]?\s*$")
_QTY_MARKER_RES = (
    re.compile(r"\b(?:quantity|qty)\s*(?:of|:|=)?\s*(\d{1,2})\b"),
    re.compile(r"\b(\d{1,2})\s*(?:units?|pcs|pieces?|items?|copies|of them)\b"),
    re.compile(r"(?:^|\s)x\s*(\d{1,2})\b"),
    re.compile(r"\b(\d{1,2})\s*x\b"),
)
_BARE_INT_RE = re.compile(r"\b(\d{1,2})\b")


def _valid_quantity(n: int) -> int | None:
    return n if 1 <= n <= MAX_PARSED_QUANTITY else None


def is_lone_number(text: str) -> bool:
    return bool(_LONE_NUMBER_RE.match(text or ""))


def parse_option_choice(text: str) -> int | None:
    """Option number the user picked: "option N" > ordinal word > a message that is only a number."""
    t = (text or "").lower()

    m = _OPTION_RE.search(t)
    if m:
        return int(m.group(1))

    for word, n in _ORDINALS.items():
        if re.search(rf"\b{word}\b", t):
            return n

    m = _LONE_NUMBER_RE.match(t)
    if m:
        return int(m.group(1))
    return None


def parse_quantity(text: str) -> int | None:
    """Quantity the user asked for: explicit marker > number word > a bare integer outside "option N"."""
    t = (text or "").lower()

    for pattern in _QTY_MARKER_RES:
        m = pattern.search(t)
        if m:
            return _valid_quantity(int(m.group(1)))

    if "just one" in t or "a single" in t:
        return 1
    if "a couple" in t or "a pair" in t:
        return 2
    for word, n in _NUMBER_WORDS.items():
        if re.search(rf"\b{word}\b", t):
            return n

    stripped = _OPTION_RE.sub(" ", t)
    m = _BARE_INT_RE.search(stripped)
    if m:
        return _valid_quantity(int(m.group(1)))
    return None


def apply_selection(session: Session, text: str) -> None:
    """Update the session's option/quantity from the user's message.

    A message that is only a number picks an option while none is selected and
    sets the quantity afterwards. Option numbers not in the current results are
    ignored.
    """
    if is_lone_number(text):
        n = int(text.strip().rstrip(".!").strip())
        if session.selected_option_index is None and session.has_option(n):
            session.selected_option_index = n
        elif session.selected_option_index is not None:
            session.selected_quantity = _valid_quantity(n) or session.selected_quantity
        return

    chosen = parse_option_choice(text)
    if chosen is not None and session.has_option(chosen):
        session.selected_option_index = chosen

    qty = parse_quantity(text)
    if qty is not None:
        session.selected_quantity = qty


BUY_INTENT_SYSTEM = "\n".join([
    "You are a classifier for a shopping assistant.",
    'Return ONLY valid JSON: {"buy": boolean, "confidence": number}.',
    "",
    "Decide if the user wants to proceed to checkout NOW.",
    "Use context:",
    "- user message",
    "- last assistant message (may contain checkout link or questions like 'open it now?')",
    "- whether an option + quantity + checkoutUrl are already known",
    "",
    "Guidelines:",
    "- If the user confirms (yes/ok/go ahead/si/oui/etc.) right after assistant asked to open checkout, that's buy=true.",
    "- If the user asks to buy/checkout/pay/open the checkout, buy=true.",
    "- If the user is still choosing options or asking questions, buy=false.",
    "",
    "Be language-agnostic.",
])


class BuyIntentClassifier:
    """Model-backed `(user_text, last_assistant_text, session) -> bool`, thresholded on confidence."""

    def __init__(self, classifier: ChatClient, threshold: float = 0.4):
        self.classifier = classifier
        self.threshold = threshold

    async def __call__(self, user_text: str, last_assistant_text: str, session: Session) -> bool:
        has_checkout_url = get_checkout_url_for_option(session, session.selected_option_index) is not None
        human = "\n".join([
            f"USER: {user_text}",
            f"LAST_ASSISTANT: {last_assistant_text or '(none)'}",
            f"STATE: selectedOption={session.selected_option_index is not None} "
            f"quantity={session.selected_quantity is not None} checkoutUrl={has_checkout_url}",
        ])
        try:
            text = await self.classifier.complete(BUY_INTENT_SYSTEM, human)
        except Exception as e:
            log.debug("Buy-intent classifier failed: %s", e)
            return False

        obj = safe_json_parse(extract_json_object(text) or "")
        if not isinstance(obj, dict) or not isinstance(obj.get("buy"), bool):
            log.debug("Buy-intent invalid JSON: %r", text[:200])
            return False

        confidence = obj.get("confidence")
        if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
            confidence = 0.0
        log.debug("Buy-intent result: %s", obj)
        return obj["buy"] and confidence >= self.threshold


LINK_OPEN_SYSTEM_TEMPLATE = "\n".join([
    "You decide whether the app should open URLs in the user's browser now.",
    "Return ONLY valid JSON. No markdown.",
    "Rules:",
    "- If the user explicitly asks to open links/pages, open=true.",
    "- If the assistant provided URLs as a recommended next step to read/act, open=true.",
    "- Otherwise open=false.",
    "- Open at most {max_urls} URLs.",
    "",
    'Return JSON: {{"open": boolean, "urls": string[]}}',
])


async def decide_link_open(
    classifier: ChatClient,
    user_text: str,
    assistant_draft: str,
    urls: list[str],
    max_urls: int = 2,
) -> list[str]:
    """URLs from `urls` to open right away (empty when unsure)."""
    if not urls or max_urls <= 0:
        return []

    message = "\n".join([
        f"User message: {user_text}",
        "",
        f"Assistant draft: {assistant_draft}",
        "",
        f"URLs: {urls}",
    ])
    try:
        text = await classifier.complete(LINK_OPEN_SYSTEM_TEMPLATE.format(max_urls=max_urls), message)
    except Exception as e:
        log.debug("Link-open classifier failed: %s", e)
        return []

    obj = safe_json_parse(extract_json_object(text) or "")
    if not isinstance(obj, dict) or obj.get("open") is not True or not isinstance(obj.get("urls"), list):
        return []
    # Only URLs the answer actually mentioned
    picked = [u for u in obj["urls"] if isinstance(u, str) and u in urls]
    return picked[:max_urls]
