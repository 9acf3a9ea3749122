"""Runtime settings read from the environment (and an optional .env file)."""
import logging
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All knobs for the assistant. Each field binds the upper-cased env var of the same name."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    llm_base_url: str = "http://localhost:11434/v1"
    llm_api_key: str = "dummy"
    llm_model: str = "qwen2.5:7b-instruct"
    primary_temperature: float = 0.3
    classifier_temperature: float = 0.0

    catalog_mcp_url: str | None = None
    catalog_mcp_cmd: str | None = None
    browser_mcp_url: str | None = None
    browser_mcp_cmd: str | None = None
    bearer_token: str | None = None
    mcp_timeout: float = 30.0

    tavily_api_key: str | None = None
    default_context: str = ""

    auto_open_checkout: bool = True
    max_quantity: int = Field(default=10, ge=1)
    buy_intent_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    plan_max_tool_calls: int = Field(default=3, ge=0)
    max_tool_steps: int = Field(default=6, ge=1)
    max_auto_open_urls: int = Field(default=2, ge=0)

    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()

    def env_map(self) -> dict[str, Any]:
        """Typed view handed to tool executors through ToolContext.env."""
        return {
            "AUTO_OPEN_CHECKOUT": self.auto_open_checkout,
            "DEFAULT_CONTEXT": self.default_context,
            "MAX_QUANTITY": self.max_quantity,
        }


def configure_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    log = logging.getLogger(name)
    if not log.handlers:
        handler = logging.StreamHandler()
        # Format: [LEVEL] timestamp - message
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(asctime)s - %(message)s", datefmt="%H:%M:%S"))
        log.addHandler(handler)
    log.setLevel(level)
    return log
