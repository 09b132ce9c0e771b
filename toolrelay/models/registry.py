"""
Adapter factory: maps a model name from the chat request to a streaming adapter.

Two wire families exist. Models whose provider is `gemini` or `google` get
the part-structured GeminiAdapter, and need their API key to be set. Every
other provider speaks the chat-completions protocol and gets an
OpenAICompatAdapter; its base URL comes from the model entry, then from the
well-known table below, then from the first configured Ollama server.

Model names missing from toolrelay.json are treated as local Ollama models.
"""
from __future__ import annotations

from toolrelay.config import ModelConfig, ToolRelayConfig, get_config
from toolrelay.models.base import BaseModelAdapter

DEFAULT_OLLAMA_URL = "http://localhost:11434/v1"

_CHAT_COMPLETIONS_URLS: dict[str, str] = {
    "openai":      "https://api.openai.com/v1",
    "groq":        "https://api.groq.com/openai/v1",
    "openrouter":  "https://openrouter.ai/api/v1",
    "together":    "https://api.together.xyz/v1",
    "mistral":     "https://api.mistral.ai/v1",
    "deepseek":    "https://api.deepseek.com/v1",
}

_GEMINI_PROVIDERS = frozenset({"gemini", "google"})


def _ollama_url(cfg: ToolRelayConfig) -> str:
    return next(
        (m.base_url for m in cfg.models if m.provider == "ollama" and m.base_url),
        DEFAULT_OLLAMA_URL,
    )


def _gemini_adapter(model: ModelConfig, api_key: str) -> BaseModelAdapter:
    from toolrelay.models.gemini import GeminiAdapter

    if not api_key:
        raise ValueError(f"API key not set for model '{model.name}'. Set {model.api_key_env} in .env")
    return GeminiAdapter(model_name=model.name, api_key=api_key, streaming=model.streaming)


def _chat_completions_adapter(name: str, base_url: str, api_key: str) -> BaseModelAdapter:
    from toolrelay.models.openai_compat import OpenAICompatAdapter

    return OpenAICompatAdapter(model_name=name, base_url=base_url, api_key=api_key)


def get_adapter(model_name: str | None = None, config: ToolRelayConfig | None = None) -> BaseModelAdapter:
    """Build the adapter for `model_name` (default model when omitted); ValueError if unusable."""
    cfg = config or get_config()
    name = model_name or cfg.default_model
    model = cfg.get_model(name)

    if model is None:
        return _chat_completions_adapter(name, _ollama_url(cfg), "ollama")

    api_key = cfg.get_model_api_key(model) or ""
    if model.provider in _GEMINI_PROVIDERS:
        return _gemini_adapter(model, api_key)

    base_url = model.base_url or _CHAT_COMPLETIONS_URLS.get(model.provider) or _ollama_url(cfg)
    # The SDK insists on some key even for servers that ignore it.
    fallback_key = "ollama" if model.provider == "ollama" else "no-key"
    return _chat_completions_adapter(name, base_url, api_key or fallback_key)
