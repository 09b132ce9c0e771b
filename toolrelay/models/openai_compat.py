"""
OpenAI-compatible adapter.
Works with OpenAI, Groq, OpenRouter, Ollama (http://localhost:11434/v1) and any
compatible endpoint. Compatible with openai SDK v1.x / v2.x.

Tool-call arguments arrive as string fragments spread over many chunks and
addressed by `index`. Fragments are forwarded as they come; they are only
parsed by the agent loop once the stream is over.
"""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Sequence

import openai
from openai import AsyncOpenAI

from toolrelay.agent.events import CanonicalEvent, TextDelta, ToolCallFragment, TurnEnd
from toolrelay.agent.history import TextPart, ToolCallPart, ToolResultPart, Turn
from toolrelay.models.base import (
    RETRYABLE_STATUS_CODES,
    TRANSPORT_ERRORS,
    BaseModelAdapter,
    ProviderError,
    get_field,
    transport_error,
)
from toolrelay.tools.base import ToolDescriptor

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Error: "


def _result_to_content(part: ToolResultPart) -> str:
    if part.is_error:
        return f"{ERROR_PREFIX}{part.error_message}"
    if isinstance(part.result, str):
        return part.result
    return json.dumps(part.result)


def _content_to_result(content: Any) -> tuple[Any, str | None]:
    text = content if isinstance(content, str) else json.dumps(content)
    if text.startswith(ERROR_PREFIX):
        return None, text[len(ERROR_PREFIX):]
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return text, None
    # Plain strings were sent verbatim, so only structured values are decoded.
    return (value, None) if isinstance(value, (dict, list)) else (text, None)


def turns_to_messages(turns: Sequence[Turn], system: str = "") -> list[dict]:
    """Flatten turns into the chat-completions message list."""
    messages: list[dict] = []
    if system:
        messages.append({"role": "system", "content": system})

    for turn in turns:
        if turn.role == "tool":
            for part in turn.tool_results:
                messages.append({
                    "role": "tool",
                    "tool_call_id": part.call_id,
                    "name": part.name,
                    "content": _result_to_content(part),
                })
            continue

        if turn.role == "user":
            messages.append({"role": "user", "content": turn.text})
            continue

        message: dict[str, Any] = {"role": "assistant", "content": turn.text or None}
        calls = turn.tool_calls
        if calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in calls
            ]
        messages.append(message)

    return messages


def turns_from_messages(messages: Sequence[dict]) -> list[Turn]:
    """Inverse of `turns_to_messages`; system messages are dropped."""
    turns: list[Turn] = []
    pending_results: list[ToolResultPart] = []

    def flush_results() -> None:
        if pending_results:
            turns.append(Turn(role="tool", parts=tuple(pending_results)))
            pending_results.clear()

    for msg in messages:
        role = msg.get("role")
        if role == "tool":
            result, error = _content_to_result(msg.get("content", ""))
            pending_results.append(ToolResultPart(
                call_id=msg.get("tool_call_id", ""),
                name=msg.get("name", ""),
                result=result,
                error_message=error,
            ))
            continue

        flush_results()
        if role == "user":
            turns.append(Turn.user(msg.get("content") or ""))
        elif role == "assistant":
            parts: list = []
            if msg.get("content"):
                parts.append(TextPart(text=msg["content"]))
            for tc in msg.get("tool_calls") or []:
                fn = tc.get("function", {})
                raw_args = fn.get("arguments") or "{}"
                parts.append(ToolCallPart(
                    id=tc.get("id", ""),
                    name=fn.get("name", ""),
                    arguments=json.loads(raw_args),
                ))
            turns.append(Turn(role="assistant", parts=tuple(parts)))

    flush_results()
    return turns


async def events_from_chunks(stream: Any) -> AsyncIterator[CanonicalEvent]:
    """Map chat-completion chunks to canonical events, ending with TurnEnd."""
    finish_reason = None

    async for chunk in stream:
        choices = get_field(chunk, "choices") or []
        if not choices:
            continue

        choice = choices[0]
        delta = get_field(choice, "delta")

        # Groq exposes thinking as `reasoning`, DeepSeek-style servers as `reasoning_content`.
        reasoning = get_field(delta, "reasoning") or get_field(delta, "reasoning_content")
        if isinstance(reasoning, str) and reasoning:
            yield TextDelta(text=reasoning, reasoning=True)

        content = get_field(delta, "content")
        if isinstance(content, str) and content:
            yield TextDelta(text=content)

        for tc_delta in get_field(delta, "tool_calls") or []:
            idx = get_field(tc_delta, "index")
            if idx is None:
                continue
            function = get_field(tc_delta, "function")
            yield ToolCallFragment(
                index=idx,
                id=get_field(tc_delta, "id"),
                name=get_field(function, "name"),
                arguments=get_field(function, "arguments"),
            )

        finish_reason = get_field(choice, "finish_reason") or finish_reason

    yield TurnEnd(finish_reason=finish_reason)


def _to_provider_error(e: Exception) -> ProviderError:
    if isinstance(e, openai.RateLimitError):
        return ProviderError(f"Rate limited: {e}", retryable=True, status_code=429)
    if isinstance(e, (openai.APITimeoutError, openai.APIConnectionError)):
        return ProviderError(f"Connection error: {e}", retryable=True)
    if isinstance(e, openai.AuthenticationError):
        return ProviderError("Invalid API key", status_code=401)
    if isinstance(e, openai.APIStatusError):
        return ProviderError(
            str(e),
            retryable=e.status_code in RETRYABLE_STATUS_CODES,
            status_code=e.status_code,
        )
    return ProviderError(str(e))


class OpenAICompatAdapter(BaseModelAdapter):
    def __init__(
        self,
        model_name: str,
        base_url: str,
        api_key: str = "ollama",
        client: Any = None,
    ):
        self.model_name = model_name
        self._base_url = base_url
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = AsyncOpenAI(base_url=self._base_url, api_key=self._api_key)
        return self._client

    def build_request(
        self,
        turns: Sequence[Turn],
        tools: list[ToolDescriptor],
        system: str,
    ) -> dict:
        kwargs: dict = {
            "model": self.model_name,
            "messages": turns_to_messages(turns, system),
            "stream": True,
        }
        if tools:
            kwargs["tools"] = [t.to_openai_schema() for t in tools]
        return kwargs

    async def _open_stream(self, kwargs: dict) -> Any:
        client = self._get_client()
        try:
            return await client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            # If the model doesn't support tools, retry once without them
            if "does not support tools" in str(e).lower() and "tools" in kwargs:
                logger.warning("Model %s rejected tools, retrying without them", self.model_name)
                kwargs = {k: v for k, v in kwargs.items() if k != "tools"}
                return await client.chat.completions.create(**kwargs)
            raise

    async def stream_turn(
        self,
        turns: Sequence[Turn],
        tools: list[ToolDescriptor],
        system: str,
    ) -> AsyncIterator[CanonicalEvent]:
        kwargs = self.build_request(turns, tools, system)
        logger.info("Requesting %s stream (%d messages)", self.model_name, len(kwargs["messages"]))

        stream = None
        try:
            stream = await self._open_stream(kwargs)
            async for event in events_from_chunks(stream):
                yield event
        except openai.APIError as e:
            raise _to_provider_error(e) from e
        except TRANSPORT_ERRORS as e:
            raise transport_error(e) from e
        finally:
            close = get_field(stream, "close")
            if close is not None:
                await close()
