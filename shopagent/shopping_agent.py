"""Conversational shopping agent: selection parsing, auto-checkout, planning, then a bounded tool loop."""
import asyncio
import json
import logging
import shlex
import time
from typing import Any

from pydantic import BaseModel
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)

from .checkout import OPEN_TOOL, BuyIntentFn, try_auto_checkout
from .config import Settings, configure_logger
from .core import HttpMcpClient, McpClient, extract_urls, is_likely_checkout_url
from .instructions import get_full_instructions
from .intent import BuyIntentClassifier, apply_selection, decide_link_open
from .llm import ChatClient, build_model, response_text, response_tool_calls
from .planner import (
    PLANNER_ALLOWED_TOOLS,
    build_planner_context,
    conversation_text,
    filter_plan,
    get_plan_with_repair,
    planner_system_prompt,
)
from .session import Option, Session, update_session_from_search_result
from .tools import (
    ToolContext,
    ToolRegistry,
    execute_tool,
    make_browser_tools,
    make_search_tools,
    make_shopping_tools,
    tool_result_to_string,
)

SEARCH_TOOL = "shopify_search"
READ_TOOL = "browser_read"
STUCK_MESSAGE = "I got stuck. Can you rephrase what you want?"


class TurnResult(BaseModel):
    """What one user turn produced for the front end."""

    message: str
    options: list[Option] | None = None
    auto_checkout: bool = False


class ShoppingAgent:
    """Runs one user turn at a time against a shared Session and tool registry."""

    def __init__(
        self,
        primary: ChatClient,
        classifier: ChatClient,
        registry: ToolRegistry,
        settings: Settings | None = None,
        session: Session | None = None,
        buy_intent: BuyIntentFn | None = None,
        log_level=logging.INFO,
    ):
        self.log = configure_logger("shopagent", log_level)
        self.settings = settings or Settings()
        self.primary = primary
        self.classifier = classifier
        self.registry = registry
        self.session = session or Session()
        self.ctx = ToolContext(env=self.settings.env_map(), session=self.session, debug=self.settings.debug)
        self.buy_intent = buy_intent or BuyIntentClassifier(classifier, self.settings.buy_intent_threshold)

        planner_tools = [t.id for t in registry.list() if t.id in PLANNER_ALLOWED_TOOLS]
        self.planner_prompt = planner_system_prompt(planner_tools, self.settings.plan_max_tool_calls)
        self.messages: list[ModelMessage] = [ModelRequest(parts=[SystemPromptPart(content=get_full_instructions())])]
        self._clients: list[Any] = []
        self._searched_this_turn = False

    @classmethod
    async def from_settings(cls, settings: Settings | None = None, log_level=logging.INFO) -> "ShoppingAgent":
        """Build models, connect the configured MCP servers and register their tools."""
        settings = settings or Settings.from_env()
        log = configure_logger("shopagent", log_level)
        model = build_model(settings)
        registry = ToolRegistry()
        clients: list[Any] = []

        catalog = await _connect_mcp("catalog", settings.catalog_mcp_url, settings.catalog_mcp_cmd, settings)
        if catalog is not None:
            clients.append(catalog)
            registry.register_many(make_shopping_tools(catalog, settings.max_quantity))
        else:
            log.warning("⚠️  No catalog MCP configured (CATALOG_MCP_URL / CATALOG_MCP_CMD); shopping search disabled")

        browser = await _connect_mcp("browser", settings.browser_mcp_url, settings.browser_mcp_cmd, settings)
        if browser is not None:
            clients.append(browser)
            registry.register_many(await make_browser_tools(browser))

        if settings.tavily_api_key:
            registry.register_many(make_search_tools(settings.tavily_api_key))

        agent = cls(
            primary=ChatClient(model, settings.primary_temperature),
            classifier=ChatClient(model, settings.classifier_temperature),
            registry=registry,
            settings=settings,
            log_level=log_level,
        )
        agent._clients = clients
        agent.log.info("🚀 Shopping agent ready with tools: %s", [t.id for t in registry.list()])
        return agent

    def _seed_history(self, history: list[dict]) -> None:
        for entry in history:
            role, content = entry.get("role"), entry.get("content")
            if not isinstance(content, str) or not content:
                continue
            if role == "user":
                self.messages.append(ModelRequest(parts=[UserPromptPart(content=content)]))
            elif role == "assistant":
                self.messages.append(ModelResponse(parts=[TextPart(content=content)]))
        self.log.debug("Seeded conversation with %d prior message(s)", len(self.messages) - 1)

    def last_assistant_text(self) -> str:
        for message in reversed(self.messages):
            if isinstance(message, ModelResponse):
                text = response_text(message)
                if text:
                    return text
        return ""

    async def run(self, user_message: str, history: list[dict] | None = None) -> TurnResult:
        """Handle one user turn and return the reply (plus options when a search ran)."""
        run_start_time = time.time()
        self.log.info("🤖 AGENT RUN: Processing user message")
        self.log.debug("User message: %s", user_message[:100] + "..." if len(user_message) > 100 else user_message)
        self._searched_this_turn = False

        if history and len(self.messages) == 1:
            self._seed_history(history)

        last_assistant = self.last_assistant_text()
        self.messages.append(ModelRequest(parts=[UserPromptPart(content=user_message)]))

        apply_selection(self.session, user_message)
        self.log.debug(
            "Selection: option=%s qty=%s", self.session.selected_option_index, self.session.selected_quantity
        )

        auto = await try_auto_checkout(
            session=self.session,
            user_text=user_message,
            last_assistant_text=last_assistant,
            is_buy_intent=self.buy_intent,
            registry=self.registry,
            ctx=self.ctx,
        )
        if auto.did_open:
            self.log.info("✅ AUTO-CHECKOUT opened %s", auto.url)
            self.session.clear_selection()
            self.messages.append(ModelResponse(parts=[TextPart(content=auto.message)]))
            return TurnResult(message=auto.message, auto_checkout=True)

        await self._run_planned_tools(user_message)

        final_text = await self._tool_loop()

        await self._auto_open_urls(user_message, final_text)

        self.log.info("⏱️  AGENT TIMING: Total=%.2fs", time.time() - run_start_time)
        options = list(self.session.last_options) if self._searched_this_turn else None
        return TurnResult(message=final_text, options=options)

    async def _run_planned_tools(self, user_message: str) -> None:
        try:
            context = build_planner_context(self.session, self.messages)
            plan = await get_plan_with_repair(
                self.classifier,
                self.planner_prompt,
                context,
                user_message,
                max_calls=self.settings.plan_max_tool_calls,
            )
            planned = filter_plan(plan, self.registry, self.session, max_calls=self.settings.plan_max_tool_calls)
            if plan is not None:
                self.log.info("📝 Planner: %d tool call(s) (%s)", len(planned), plan.rationale or "no rationale")
        except Exception as e:
            self.log.debug("Planner failed: %s", e)
            return

        for call in planned:
            result = await execute_tool(self.registry, call.name, call.args, self.ctx)
            text = tool_result_to_string(result)
            if call.name == SEARCH_TOOL and update_session_from_search_result(self.session, text):
                self._searched_this_turn = True
            self.messages.append(ModelRequest(parts=[
                SystemPromptPart(content=f'Context from planned tool "{call.name}" (JSON): {text}')
            ]))

    async def _execute_model_call(self, call: ToolCallPart) -> str:
        args = _call_args(call)
        if call.tool_name == READ_TOOL and isinstance(args.get("url"), str) and is_likely_checkout_url(args["url"]):
            # Reading a checkout page is never useful; open it instead
            self.log.info("🛡️  browser_read on checkout URL redirected to %s", OPEN_TOOL)
            result = await execute_tool(self.registry, OPEN_TOOL, {"url": args["url"]}, self.ctx)
            return tool_result_to_string(result)

        result = await execute_tool(self.registry, call.tool_name, call.args, self.ctx)
        text = tool_result_to_string(result)
        if call.tool_name == SEARCH_TOOL and update_session_from_search_result(self.session, text):
            self._searched_this_turn = True
        return text

    async def _tool_loop(self) -> str:
        tools = self.registry.definitions()
        for step in range(self.settings.max_tool_steps):
            response = await self.primary.invoke(self.messages, tools=tools)
            self.messages.append(response)
            calls = response_tool_calls(response)
            if not calls:
                text = response_text(response)
                if text:
                    return text
                break

            self.log.info("🔧 Step %d: model requested %d tool call(s)", step + 1, len(calls))
            returns = []
            for call in calls:
                content = await self._execute_model_call(call)
                returns.append(ToolReturnPart(tool_name=call.tool_name, content=content, tool_call_id=call.tool_call_id))
            self.messages.append(ModelRequest(parts=returns))

        self.log.warning("⚠️  No final answer within %d step(s)", self.settings.max_tool_steps)
        self.messages.append(ModelResponse(parts=[TextPart(content=STUCK_MESSAGE)]))
        return STUCK_MESSAGE

    async def _auto_open_urls(self, user_message: str, final_text: str) -> None:
        if OPEN_TOOL not in self.registry:
            return
        urls = extract_urls(final_text)
        picked = await decide_link_open(
            self.classifier, user_message, final_text, urls, max_urls=self.settings.max_auto_open_urls
        )
        for url in picked:
            result = await execute_tool(self.registry, OPEN_TOOL, {"url": url}, self.ctx)
            if not result.ok:
                self.log.warning("Auto-open of %s failed: %s", url, result.error.message)

    def transcript(self) -> list[dict]:
        """User/assistant texts so far (system prompts, planner context and tool traffic left out)."""
        return [
            {"role": role.lower(), "content": content}
            for message in self.messages
            for role, content in conversation_text(message)
        ]

    def clear_history(self):
        """Drop the conversation (keeps the system prompt) and reset the session."""
        count = len(self.messages) - 1
        self.messages = self.messages[:1]
        self.session = Session()
        self.ctx.session = self.session
        self.log.info("🗑️  Cleared conversation history (%d messages removed)", count)

    async def close(self):
        for client in self._clients:
            await client.close()
        self._clients = []


def _call_args(call: ToolCallPart) -> dict:
    if isinstance(call.args, dict):
        return call.args
    if isinstance(call.args, str) and call.args.strip():
        try:
            parsed = json.loads(call.args)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


async def _connect_mcp(name: str, url: str | None, cmd: str | None, settings: Settings):
    if url:
        headers = {"Authorization": f"Bearer {settings.bearer_token}"} if settings.bearer_token else {}
        client = HttpMcpClient(name, url, headers=headers, timeout=settings.mcp_timeout)
    elif cmd:
        client = McpClient(name, shlex.split(cmd), timeout=settings.mcp_timeout)
    else:
        return None
    await client.initialize()
    return client


async def main():
    import sys

    # Allow log level to be set via command line
    log_level = logging.INFO
    if "--debug" in sys.argv:
        log_level = logging.DEBUG
    elif "--warning" in sys.argv:
        log_level = logging.WARNING

    settings = Settings.from_env()
    if log_level == logging.DEBUG:
        settings.debug = True
    agent = await ShoppingAgent.from_settings(settings, log_level=log_level)
    agent.log.info("Log level: %s", logging.getLevelName(log_level))

    print("Shopping assistant ready. Ask me anything. Type 'exit' to quit.")
    print("(Use --debug for detailed logs, --warning for minimal logs)\n")

    try:
        while True:
            user = input("You: ").strip()
            if user.lower() in ("exit", "quit"):
                agent.log.info("👋 User requested exit")
                break
            if not user:
                continue
            result = await agent.run(user)
            print("Agent:", result.message)
            print()
    except (KeyboardInterrupt, EOFError):
        agent.log.info("⚠️  Interrupted by user")
    except Exception as e:
        agent.log.error("💥 Fatal error: %s", str(e))
        raise
    finally:
        await agent.close()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
