"""Pre-answer tool planning with JSON repair.

The classifier model is asked for a small JSON plan of information-gathering
tool calls. Its output is often slightly broken, so parsing escalates:
strict parse -> regex patch -> "regenerate" prompt -> dedicated repair prompt.
A turn with no usable plan simply runs without planned tools.
"""
import logging
import re
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_ai.messages import ModelMessage, ModelRequest, ModelResponse, TextPart, UserPromptPart

from .core import extract_json_object, safe_json_parse
from .llm import ChatClient
from .session import Session, summarize_options_for_planner
from .tools.registry import ToolRegistry

log = logging.getLogger(__name__)

# Read-only tools; transactional ones (checkout, open) are never planned
PLANNER_ALLOWED_TOOLS = ("web_search", "shopify_search", "browser_read")

TOOL_ARG_CONTRACTS = {
    "web_search": 'web_search(args): { query: string, limit?: number (1-10), depth?: "basic"|"advanced" }',
    "shopify_search": "shopify_search(args): { query: string, ships_to: string (ISO 2-letter country code like US/ES/FR/GB) }",
    "browser_read": "browser_read(args): { url: string }",
}

REGENERATE_INSTRUCTION = (
    "Your previous output was invalid JSON. Output ONLY valid JSON in the required shape. "
    "tool_calls must be an array of objects. Quote all keys and all string values."
)


class PlannedCall(BaseModel):
    name: str = Field(min_length=1)
    args: dict[str, Any] = Field(default_factory=dict)

    @field_validator("args", mode="before")
    @classmethod
    def _null_args(cls, v):
        return {} if v is None else v


class Plan(BaseModel):
    tool_calls: list[PlannedCall] = Field(default_factory=list)
    rationale: str | None = None

    @field_validator("tool_calls", mode="before")
    @classmethod
    def _null_calls(cls, v):
        return [] if v is None else v


def planner_system_prompt(tool_names: list[str], max_calls: int = 3) -> str:
    contracts = [TOOL_ARG_CONTRACTS[n] for n in tool_names if n in TOOL_ARG_CONTRACTS]
    return "\n".join([
        "You are a tool planner for a shopping assistant.",
        "Decide which tools (if any) should be called BEFORE answering the user.",
        "",
        "You MUST output ONLY one valid JSON object. No markdown. No commentary. No extra keys.",
        "",
        "Available tools:",
        *[f"- {n}" for n in tool_names],
        "",
        "Tool argument contracts:",
        *[f"- {c}" for c in contracts],
        "",
        "CRITICAL JSON RULES:",
        "- Quote ALL keys and ALL string values.",
        "- Do NOT use single quotes.",
        "- Do NOT include trailing commas.",
        "",
        "CRITICAL SHAPE RULE:",
        "- tool_calls MUST be an array of OBJECTS.",
        '- Each element MUST be exactly: {"name":"...","args":{...}}',
        '- Never put "name" or "args" directly inside the array without braces.',
        "",
        "Rules:",
        f"- Plan at most {max_calls} tool calls.",
        "- Prefer at most ONE web_search (combine needs into one query).",
        "- Use tools only if they genuinely help.",
        "",
        "Grounding rules:",
        "- If the user is selecting among already-presented shop options, do NOT call web_search.",
        "- If the user wants to buy/checkout/open a checkout link for an already-presented option, plan 0 tools.",
        "- Use shopify_search when you need buyable options/prices/variants.",
        "- Use web_search for up-to-date advice ONLY outside selection/checkout flow.",
        "- browser_read is ONLY for reading page text. Never use it to open a checkout/cart link.",
        "",
        "Return JSON with this EXACT shape:",
        '{"tool_calls":[{"name":"tool_name","args":{}}],"rationale":"short reason"}',
        "",
        "Example with 0 tools:",
        '{"tool_calls":[],"rationale":"No tools needed."}',
        "",
        "Example with 2 tools (VALID):",
        '{"tool_calls":[',
        '  {"name":"web_search","args":{"query":"best Russian novels","limit":5,"depth":"basic"}},',
        '  {"name":"shopify_search","args":{"query":"The Idiot French edition","ships_to":"FR"}}',
        '],"rationale":"Need recommendations and buyable options."}',
    ])


def repair_system_prompt(max_calls: int = 3) -> str:
    return "\n".join([
        "You are a JSON repair bot.",
        "You will be given INVALID JSON that was supposed to follow a required schema.",
        "Your job: output ONLY a single VALID JSON object that conforms exactly to the schema.",
        "",
        "Schema required:",
        '{"tool_calls":[{"name":"tool_name","args":{}}],"rationale":"string"}',
        "",
        "Rules:",
        "- Output ONLY JSON. No markdown. No explanations.",
        "- Quote all keys and string values.",
        '- tool_calls must be an array of OBJECTS. Each object: {"name":"...","args":{...}}',
        "- Keep tool names only from the available tools listed in the system prompt.",
        f"- Keep at most {max_calls} tool calls.",
    ])


_FLATTENED_ELEMENT = re.compile(r'\}\s*,\s*"name"\s*:')
_CLOSED_TOO_EARLY = re.compile(r'\]\s*,\s*"name"\s*:')


def fix_common_plan_json_mistakes(json_text: str) -> str:
    """Patch the flattened tool_calls element the planner model tends to emit.

    `[{"name":"a","args":{}},"name":"b","args":{}}]` -> `[..},{"name":"b",...}]`
    `[{"name":"a","args":{}}],"name":"b","args":{}}]` -> `[..},{"name":"b",...}]`
    """
    fixed = _FLATTENED_ELEMENT.sub('},{"name":', json_text)
    return _CLOSED_TOO_EARLY.sub(',{"name":', fixed)


def parse_plan_text(text: str) -> Plan | None:
    json_text = extract_json_object(text)
    if not json_text:
        return None

    for candidate in (json_text, fix_common_plan_json_mistakes(json_text)):
        obj = safe_json_parse(candidate)
        if not isinstance(obj, dict):
            continue
        try:
            return Plan.model_validate(obj)
        except ValidationError:
            continue
    return None


def conversation_text(message: ModelMessage) -> list[tuple[str, str]]:
    out = []
    if isinstance(message, ModelRequest):
        for part in message.parts:
            if isinstance(part, UserPromptPart) and isinstance(part.content, str):
                out.append(("USER", part.content))
    elif isinstance(message, ModelResponse):
        text = "".join(p.content for p in message.parts if isinstance(p, TextPart))
        if text:
            out.append(("ASSISTANT", text))
    return out


def last_conversation_snippet(messages: list[ModelMessage], max_chars: int = 900, max_entries: int = 6) -> str:
    picked: list[str] = []
    for message in reversed(messages):
        for role, content in reversed(conversation_text(message)):
            if not content.strip():
                continue
            picked.append(f"{role}: {content}")
        if len(picked) >= max_entries or len("\n".join(picked)) >= max_chars:
            break
    return "\n".join(reversed(picked[:max_entries]))[-max_chars:]


def build_planner_context(session: Session, messages: list[ModelMessage]) -> str:
    return "\n".join([
        "PLANNER CONTEXT:",
        f"- Known ships_to: {session.last_ships_to or '(unknown)'}",
        f"- Last shopify query: {session.last_query or '(none)'}",
        "- Last shopify options (summary):",
        summarize_options_for_planner(session.last_options),
        "",
        "Recent conversation (most recent last):",
        last_conversation_snippet(messages),
    ])


async def get_plan_with_repair(
    planner: ChatClient,
    system_prompt: str,
    context: str,
    user: str,
    max_calls: int = 3,
) -> Plan | None:
    """Ask for a plan, escalating through two repair attempts. None means "plan nothing"."""
    first_text = await planner.complete([system_prompt, context], user)
    plan = parse_plan_text(first_text)
    if plan:
        log.debug("Planner plan: %s", plan)
        return plan

    log.debug("Planner output invalid, asking to regenerate. head=%r", first_text[:200])
    regen_text = await planner.complete([system_prompt, context, REGENERATE_INSTRUCTION], user)
    plan = parse_plan_text(regen_text)
    if plan:
        log.debug("Planner recovered with regenerate prompt: %s", plan)
        return plan

    invalid_text = regen_text or first_text
    repair_user = "\n".join([
        "SYSTEM PROMPT (tools + rules):",
        system_prompt,
        "",
        "CONTEXT:",
        context,
        "",
        "USER MESSAGE:",
        user,
        "",
        "INVALID JSON TO REPAIR:",
        invalid_text,
    ])
    repaired_text = await planner.complete(repair_system_prompt(max_calls), repair_user)
    plan = parse_plan_text(repaired_text)
    if plan:
        log.debug("Planner recovered with repair prompt: %s", plan)
    else:
        log.debug("Planner output still invalid after repair. head=%r", repaired_text[:400])
    return plan


def filter_plan(
    plan: Plan | None,
    registry: ToolRegistry,
    session: Session,
    allowed: tuple[str, ...] = PLANNER_ALLOWED_TOOLS,
    max_calls: int = 3,
) -> list[PlannedCall]:
    """Keep allowed, registered calls (first `max_calls`, in order) and back-fill ships_to."""
    if plan is None:
        return []

    planned = [c for c in plan.tool_calls if c.name in allowed and c.name in registry][:max_calls]

    out = []
    for call in planned:
        if call.name == "shopify_search" and not call.args.get("ships_to") and session.last_ships_to:
            call = PlannedCall(name=call.name, args={**call.args, "ships_to": session.last_ships_to})
        out.append(call)
    return out
