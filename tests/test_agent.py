import pytest
from pydantic_ai.messages import (
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, FunctionModel

from conftest import CATALOG_PAYLOAD, FakeMcp, RoutingClassifier, mcp_text, sample_options
from shopagent import ShoppingAgent, TurnResult
from shopagent.config import Settings
from shopagent.llm import ChatClient
from shopagent.shopping_agent import STUCK_MESSAGE
from shopagent.tools import ToolRegistry, ToolSpec, make_shopping_tools, ok
from shopagent.tools.browser import BrowserReadInput


def text(content):
    return ModelResponse(parts=[TextPart(content=content)])


def call(name, args):
    return ModelResponse(parts=[ToolCallPart(tool_name=name, args=args)])


def after_tool_return(messages):
    return any(isinstance(p, ToolReturnPart) for p in messages[-1].parts)


class Harness:
    def __init__(self, fn, classifier=None, settings=None, buy_intent=None):
        self.catalog = FakeMcp("catalog", responses={"search_global_products": mcp_text(CATALOG_PAYLOAD)})
        self.browser_reads = []

        async def browser_read(ctx, input):
            self.browser_reads.append(input.url)
            return ok({"url": input.url, "title": "Page", "text": "body", "tool_used": "read_page"})

        registry = ToolRegistry()
        registry.register_many(make_shopping_tools(self.catalog))
        registry.register(ToolSpec("browser_read", "Read a page", BrowserReadInput, browser_read))

        self.model_calls = []

        def recording(messages, info: AgentInfo):
            self.model_calls.append((list(messages), info))
            return fn(messages, info)

        self.classifier = classifier or RoutingClassifier()
        self.agent = ShoppingAgent(
            primary=ChatClient(FunctionModel(recording), temperature=0.3),
            classifier=self.classifier,
            registry=registry,
            settings=settings or Settings(),
            buy_intent=buy_intent,
        )


async def test_plain_chat(opened_urls):
    h = Harness(lambda messages, info: text("Hi! What are you shopping for?"))

    result = await h.agent.run("hello")

    assert result == TurnResult(message="Hi! What are you shopping for?")
    assert h.classifier.kinds() == ["buy", "plan"]
    assert h.agent.transcript() == [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "Hi! What are you shopping for?"},
    ]
    _, info = h.model_calls[0]
    assert {t.name for t in info.function_tools} == {
        "shopify_search", "adjust_checkout_quantity", "open_in_browser", "browser_read",
    }
    assert info.model_settings["temperature"] == 0.3


async def test_model_search_is_folded_into_session(opened_urls):
    def fn(messages, info):
        if after_tool_return(messages):
            return text("Option 1 — Headphones — $199.99\nWhich one should I grab, and how many?")
        return call("shopify_search", {"query": "headphones", "ships_to": "US"})

    h = Harness(fn)
    h.agent.session.selected_option_index = 1

    result = await h.agent.run("find me noise cancelling headphones shipped to the US")

    assert [o.option_index for o in result.options] == [1, 2]
    assert h.agent.session.last_query == "headphones"
    assert h.agent.session.selected_option_index is None
    returned = h.model_calls[1][0][-1].parts[0]
    assert returned.tool_name == "shopify_search"
    assert returned.content.startswith('{"ok":true')


async def test_planned_search_runs_before_the_model(opened_urls):
    classifier = RoutingClassifier(
        plan='{"tool_calls":[{"name":"shopify_search","args":{"query":"headphones"}}],"rationale":"need options"}'
    )
    h = Harness(lambda messages, info: text("Here are two options."), classifier=classifier)
    h.agent.session.last_ships_to = "FR"

    result = await h.agent.run("headphones please")

    assert h.catalog.calls[0][1]["ships_to"] == "FR"
    assert len(result.options) == 2
    messages, _ = h.model_calls[0]
    context = [
        p.content for m in messages for p in m.parts
        if isinstance(p, SystemPromptPart) and p.content.startswith('Context from planned tool "shopify_search" (JSON):')
    ]
    assert len(context) == 1
    assert '"options":[' in context[0]


async def test_browser_read_on_checkout_url_opens_it(opened_urls):
    def fn(messages, info):
        if after_tool_return(messages):
            return text("Done, the checkout page is open.")
        return call("browser_read", {"url": "https://shop.test/cart/55:2"})

    h = Harness(fn)
    await h.agent.run("open that checkout")

    assert h.browser_reads == []
    assert opened_urls == ["https://shop.test/cart/55:2"]
    returned = h.model_calls[1][0][-1].parts[0]
    assert returned.tool_name == "browser_read"
    assert '"opened":true' in returned.content


async def test_plain_browser_read_passes_through(opened_urls):
    def fn(messages, info):
        if after_tool_return(messages):
            return text("The review says it is great.")
        return call("browser_read", {"url": "https://blog.test/review"})

    h = Harness(fn)
    await h.agent.run("what does this review say?")
    assert h.browser_reads == ["https://blog.test/review"]


async def test_unknown_tool_is_reported_back_to_the_model(opened_urls):
    def fn(messages, info):
        if after_tool_return(messages):
            return text("Sorry, I can't do that.")
        return call("teleport", {"where": "mars"})

    h = Harness(fn)
    result = await h.agent.run("take me to mars")

    assert result.message == "Sorry, I can't do that."
    assert "UNKNOWN_TOOL" in h.model_calls[1][0][-1].parts[0].content


async def test_step_limit_gives_stuck_message(opened_urls):
    h = Harness(
        lambda messages, info: call("adjust_checkout_quantity", {"checkout_url": "https://s.test/cart/1:1"}),
        settings=Settings(max_tool_steps=2),
    )
    result = await h.agent.run("loop forever")
    assert result.message == STUCK_MESSAGE
    assert len(h.model_calls) == 2


async def test_empty_answer_gives_stuck_message(opened_urls):
    h = Harness(lambda messages, info: text(""))
    result = await h.agent.run("hm")
    assert result.message == STUCK_MESSAGE
    assert h.agent.transcript()[-1] == {"role": "assistant", "content": STUCK_MESSAGE}


async def test_buy_turn_short_circuits_to_checkout(opened_urls):
    def fn(messages, info):
        raise AssertionError("primary model must not run on an auto-checkout turn")

    classifier = RoutingClassifier(buy='{"buy": true, "confidence": 0.95}')
    h = Harness(fn, classifier=classifier)
    h.agent.session.replace_options(sample_options(3), "widget", "US")

    result = await h.agent.run("option 2, qty 3, buy it")

    assert result == TurnResult(message="Opening checkout now for Option 2 (qty 3).", auto_checkout=True)
    assert opened_urls == ["https://shop.example.com/cart/2002:3"]
    assert classifier.kinds() == ["buy"]
    assert h.agent.session.selected_option_index is None
    assert h.agent.transcript()[-1]["content"] == result.message


async def test_links_in_the_answer_are_opened_when_asked(opened_urls):
    classifier = RoutingClassifier(link='{"open": true, "urls": ["https://gear.test/guide", "https://elsewhere.test"]}')
    h = Harness(lambda messages, info: text("See https://gear.test/guide for sizing."), classifier=classifier)

    await h.agent.run("open the sizing guide")

    assert opened_urls == ["https://gear.test/guide"]
    assert classifier.kinds() == ["buy", "plan", "link"]


async def test_history_seeds_a_fresh_conversation(opened_urls):
    seen = []

    def buy_intent(user_text, last_assistant_text, session):
        seen.append(last_assistant_text)
        return False

    h = Harness(lambda messages, info: text("Sure."), buy_intent=buy_intent)
    history = [
        {"role": "user", "content": "find tents"},
        {"role": "assistant", "content": "Open checkout for Option 1?"},
        {"role": "tool", "content": "ignored"},
    ]

    await h.agent.run("yes", history=history)
    await h.agent.run("thanks", history=history)

    assert seen == ["Open checkout for Option 1?", "Sure."]
    users = [p.content for m in h.agent.messages for p in m.parts if isinstance(p, UserPromptPart)]
    assert users == ["find tents", "yes", "thanks"]


async def test_model_errors_propagate(opened_urls):
    def fn(messages, info):
        raise RuntimeError("model unreachable")

    h = Harness(fn)
    with pytest.raises(RuntimeError, match="model unreachable"):
        await h.agent.run("hello")


async def test_clear_history_resets_session(opened_urls):
    h = Harness(lambda messages, info: text("ok"))
    await h.agent.run("hello")
    h.agent.session.replace_options(sample_options(1), "w", "US")

    h.agent.clear_history()

    assert h.agent.transcript() == []
    assert h.agent.session.last_options == []
    assert h.agent.ctx.session is h.agent.session


async def test_chat_client_complete_sends_system_and_user_parts():
    seen = []

    def fn(messages, info):
        seen.append((messages, info))
        return text("pong")

    client = ChatClient(FunctionModel(fn), temperature=0.0)
    assert await client.complete(["rules", "context"], "ping") == "pong"

    messages, info = seen[0]
    assert [type(p) for p in messages[0].parts] == [SystemPromptPart, SystemPromptPart, UserPromptPart]
    assert info.function_tools == []
    assert info.model_settings["temperature"] == 0.0
