"""Single-request model access on top of pydantic-ai.

The assistant drives its own tool loop, so models are called one request at a
time through `pydantic_ai.direct.model_request` instead of `Agent.run`.
"""
from pydantic_ai.direct import model_request
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings
from pydantic_ai.tools import ToolDefinition

from .config import Settings


def build_model(settings: Settings) -> Model:
    return OpenAIChatModel(
        model_name=settings.llm_model,
        provider=OpenAIProvider(base_url=settings.llm_base_url, api_key=settings.llm_api_key),
    )


def response_text(response: ModelResponse) -> str:
    return "".join(p.content for p in response.parts if isinstance(p, TextPart))


def response_tool_calls(response: ModelResponse) -> list[ToolCallPart]:
    return [p for p in response.parts if isinstance(p, ToolCallPart)]


class ChatClient:
    """One model at one temperature."""

    def __init__(self, model: Model, temperature: float = 0.0):
        self.model = model
        self.temperature = temperature

    async def invoke(self, messages: list[ModelMessage], tools: list[ToolDefinition] | None = None) -> ModelResponse:
        params = ModelRequestParameters(function_tools=list(tools or []))
        return await model_request(
            self.model,
            messages,
            model_settings=ModelSettings(temperature=self.temperature),
            model_request_parameters=params,
        )

    async def complete(self, system: str | list[str], user: str) -> str:
        """Plain text completion for classifier-style prompts (no tools)."""
        systems = [system] if isinstance(system, str) else system
        parts = [SystemPromptPart(content=s) for s in systems]
        parts.append(UserPromptPart(content=user))
        response = await self.invoke([ModelRequest(parts=parts)])
        return response_text(response)
