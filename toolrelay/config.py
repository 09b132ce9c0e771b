"""
Configuration system: reads toolrelay.json + .env
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


# ── JSON schema models ───────────────────────────────────────────────────────

class ModelConfig(BaseModel):
    name: str
    display_name: str
    provider: str  # "gemini" | "openai" | "groq" | "ollama" | ...
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None
    streaming: bool = True


class WebSearchToolConfig(BaseModel):
    enabled: bool = True
    max_results: int = 5


class ToolsConfig(BaseModel):
    web_search: WebSearchToolConfig = Field(default_factory=WebSearchToolConfig)


class McpServerConfig(BaseModel):
    id: str
    name: str
    type: Literal["stdio", "sse"] = "stdio"
    command: Optional[str] = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    url: Optional[str] = None
    headers: dict[str, str] = Field(default_factory=dict)


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    initial_backoff_seconds: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)


class AgentConfig(BaseModel):
    max_turns: int = Field(default=5, ge=1)
    tool_timeout_seconds: float = 30.0
    provider_timeout_seconds: float = 60.0
    retry: RetryConfig = Field(default_factory=RetryConfig)
    on_argument_error: Literal["report", "abort"] = "report"
    system_prompt: str = (
        "You are a helpful assistant. Use the available tools when they help "
        "answer the question, and answer from the provided context first."
    )


class OutputConfig(BaseModel):
    reasoning_marker: Optional[str] = None


class ToolRelayConfig(BaseModel):
    version: str = "1.0"
    default_model: str = "gemini-2.5-flash"
    models: list[ModelConfig] = Field(default_factory=list)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    mcp_servers: list[McpServerConfig] = Field(default_factory=list)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    def get_model(self, name: str) -> Optional[ModelConfig]:
        for m in self.models:
            if m.name == name:
                return m
        return None

    def get_model_api_key(self, model: ModelConfig) -> Optional[str]:
        if model.api_key_env:
            return os.environ.get(model.api_key_env)
        return None


# ── App settings (from .env) ─────────────────────────────────────────────────

class AppSettings(BaseSettings):
    host: str = "127.0.0.1"
    port: int = 8000
    config_path: str = "./toolrelay.json"
    log_level: str = "INFO"

    model_config = {"env_prefix": "TOOLRELAY_", "env_file": ".env", "extra": "ignore"}


# ── Singleton loaders ─────────────────────────────────────────────────────────

_config: Optional[ToolRelayConfig] = None
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def load_config(path: Optional[str] = None) -> ToolRelayConfig:
    global _config
    settings = get_settings()
    config_file = Path(path or settings.config_path)

    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        _config = ToolRelayConfig(**data)
    else:
        _config = ToolRelayConfig()

    return _config


def get_config() -> ToolRelayConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config
