"""Tool specs, the result envelope every tool returns, and the registry that holds them."""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Union

from pydantic import BaseModel, ValidationError
from pydantic_ai.tools import ToolDefinition

from ..session import Session

log = logging.getLogger(__name__)


class ToolError(BaseModel):
    code: str
    message: str
    details: Any = None


class ToolSuccess(BaseModel):
    ok: Literal[True] = True
    data: Any = None
    meta: dict[str, Any] | None = None


class ToolFailure(BaseModel):
    ok: Literal[False] = False
    error: ToolError


ToolResult = Union[ToolSuccess, ToolFailure]


def ok(data: Any = None, meta: dict[str, Any] | None = None) -> ToolSuccess:
    return ToolSuccess(data=data, meta=meta)


def fail(code: str, message: str, details: Any = None) -> ToolFailure:
    return ToolFailure(error=ToolError(code=code, message=message, details=details))


def tool_result_to_string(result: ToolResult) -> str:
    """Serialize a result for the conversation (the only place results become text)."""
    return result.model_dump_json()


@dataclass
class ToolContext:
    """Shared runtime state handed to every executor."""

    env: dict[str, Any]
    session: Session
    debug: bool = False


@dataclass
class ToolSpec:
    id: str
    description: str
    input: type[BaseModel]
    run: Callable[[ToolContext, Any], Awaitable[ToolResult]]

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.id,
            description=self.description,
            parameters_json_schema=self.input.model_json_schema(),
        )


class ToolRegistry:
    """Tools by id, in registration order."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, tool: ToolSpec) -> None:
        if tool.id in self._tools:
            raise ValueError(f"Tool already registered: {tool.id}")
        self._tools[tool.id] = tool

    def register_many(self, tools: list[ToolSpec]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, tool_id: str) -> ToolSpec | None:
        return self._tools.get(tool_id)

    def __contains__(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def definitions(self) -> list[ToolDefinition]:
        return [t.definition() for t in self._tools.values()]

    # Last in the class body: the name shadows the builtin from here on
    def list(self) -> list[ToolSpec]:
        return [*self._tools.values()]


async def execute_tool(registry: ToolRegistry, name: str, args: Any, ctx: ToolContext) -> ToolResult:
    """Validate and run one tool call; every failure comes back as a ToolFailure."""
    tool = registry.get(name)
    if tool is None:
        return fail("UNKNOWN_TOOL", f"Unknown tool: {name}")

    start_time = time.time()
    log.info("🔧 TOOL CALL: %s", name)
    log.debug("Args for %s: %s", name, args)

    if isinstance(args, str):
        try:
            args = json.loads(args) if args.strip() else {}
        except ValueError:
            return fail("INVALID_ARGS", f"Arguments for {name} are not valid JSON", details=args[:200])
    try:
        parsed = tool.input.model_validate(args or {})
    except ValidationError as e:
        log.warning("⚠️  Invalid args for %s: %s", name, e.errors()[:3])
        return fail("INVALID_ARGS", f"Invalid arguments for {name}", details=json.loads(e.json())[:3])

    try:
        result = await tool.run(ctx, parsed)
    except Exception as e:
        log.error("❌ TOOL ERROR: %s raised after %.2fs - %s", name, time.time() - start_time, str(e))
        return fail("TOOL_EXCEPTION", str(e))

    if not isinstance(result, (ToolSuccess, ToolFailure)):
        log.error("❌ TOOL ERROR: %s returned %s instead of a tool result", name, type(result).__name__)
        return fail("BAD_RESULT", f"{name} returned {type(result).__name__}")

    elapsed = time.time() - start_time
    if result.ok:
        log.info("✅ TOOL SUCCESS: %s (took %.2fs)", name, elapsed)
    else:
        log.warning("❌ TOOL ERROR: %s - %s: %s", name, result.error.code, result.error.message)
    return result
