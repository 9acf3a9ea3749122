"""Shared fakes: scripted classifier, in-memory MCP servers, catalog payloads and sample options."""
import json
import webbrowser

import pytest

from shopagent.config import Settings
from shopagent.session import Option, Session
from shopagent.tools import ToolContext


def mcp_text(payload) -> dict:
    """Wrap a payload the way MCP tools/call returns text content."""
    return {"content": [{"type": "text", "text": json.dumps(payload)}]}


def sample_options(n: int = 3) -> list[Option]:
    return [
        Option(
            option_index=i,
            title=f"Widget {i}",
            variant_id=1000 + i,
            price=f"${10 * i:.2f}",
            currency="USD",
            seller="shop.example.com",
            bullets=(f"color: c{i}", "size: M"),
            product_url=f"https://shop.example.com/products/widget-{i}",
            checkout_url=f"https://shop.example.com/cart/{2000 + i}:1",
        )
        for i in range(1, n + 1)
    ]


CATALOG_PAYLOAD = {
    "offers": [
        {
            "title": "Noise Cancelling Headphones",
            "variants": [
                {
                    "id": "gid://shopify/ProductVariant/4242",
                    "displayName": "Noise Cancelling Headphones - Black",
                    "price": {"amount": 19999, "currency": "USD"},
                    "shop": {"onlineStoreUrl": "https://www.audio-shop.com"},
                    "options": [{"name": "Color", "value": "Black"}, {"name": "Condition", "value": "New"}],
                    "variantUrl": "https://www.audio-shop.com/products/nc-headphones?variant=4242",
                    "checkoutUrl": "https://www.audio-shop.com/cart/4242:1?payment=shop_pay",
                },
                {
                    "id": "gid://shopify/ProductVariant/4243",
                    "price": {"amount": 17950, "currency": "EUR"},
                    "shop": {"onlineStoreUrl": "https://audio-shop.eu"},
                    "options": [{"name": "Color", "value": "Silver"}],
                    "variantUrl": "https://audio-shop.eu/products/nc-headphones?variant=4243",
                    "checkoutUrl": "https://audio-shop.eu/cart/4243:1",
                },
            ],
        }
    ]
}


class FakeMcp:
    """In-memory MCP server: fixed tool list, canned results per tool name."""

    def __init__(self, name="fake", tools=None, responses=None, error=None):
        self.name = name
        self.tools = tools or []
        self.responses = responses or {}
        self.error = error
        self.calls = []
        self.closed = False

    async def list_tools(self):
        if isinstance(self.error, Exception):
            raise self.error
        return [{"name": n} for n in self.tools]

    async def call_tool(self, name, arguments):
        self.calls.append((name, arguments))
        if isinstance(self.error, Exception):
            raise self.error
        return self.responses[name]

    async def close(self):
        self.closed = True


class ScriptedClassifier:
    """Stands in for the classifier ChatClient; replies are consumed in order."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    async def complete(self, system, user):
        self.calls.append((system, user))
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply


class RoutingClassifier:
    """Classifier fake that answers planner, buy-intent and link-open prompts separately."""

    def __init__(self, plan='{"tool_calls":[],"rationale":"none"}', buy='{"buy":false,"confidence":0.0}',
                 link='{"open":false,"urls":[]}'):
        self.plan = plan
        self.buy = buy
        self.link = link
        self.calls = []

    async def complete(self, system, user):
        text = system if isinstance(system, str) else "\n".join(system)
        if "tool planner" in text:
            kind, reply = "plan", self.plan
        elif "classifier for a shopping assistant" in text:
            kind, reply = "buy", self.buy
        else:
            kind, reply = "link", self.link
        self.calls.append((kind, user))
        return reply

    def kinds(self):
        return [k for k, _ in self.calls]


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def session():
    return Session()


@pytest.fixture
def session_with_options():
    s = Session(last_ships_to="US", last_query="widget")
    s.replace_options(sample_options(3), "widget", "US")
    return s


@pytest.fixture
def ctx(settings, session_with_options):
    return ToolContext(env=settings.env_map(), session=session_with_options)


@pytest.fixture
def opened_urls(monkeypatch):
    """Capture webbrowser.open calls instead of launching a browser."""
    urls = []

    def fake_open(url, new=0, autoraise=True):
        urls.append(url)
        return True

    monkeypatch.setattr(webbrowser, "open", fake_open)
    return urls
