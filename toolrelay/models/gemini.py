"""
Google Gemini model adapter.
Uses the google-genai SDK with streaming function calling.

Gemini streams `Content` parts: text parts (optionally flagged as `thought`)
and whole `function_call` parts. A function call may carry an opaque
`thought_signature` that has to be sent back untouched with the same call in
the next request, so it travels on the ToolCallPart in history.
"""
from __future__ import annotations

import itertools
import json
import logging
from typing import Any, AsyncIterator, Iterator, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

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


def _result_payload(part: ToolResultPart) -> dict[str, Any]:
    if part.is_error:
        return {"error": part.error_message}
    return {"result": part.result}


def turns_to_contents(turns: Sequence[Turn]) -> list[genai_types.Content]:
    """Convert history turns into Gemini contents, one Content per turn."""
    contents: list[genai_types.Content] = []

    for turn in turns:
        parts: list[genai_types.Part] = []
        for part in turn.parts:
            if isinstance(part, TextPart):
                if part.text:
                    parts.append(genai_types.Part(text=part.text))
            elif isinstance(part, ToolCallPart):
                parts.append(genai_types.Part(
                    function_call=genai_types.FunctionCall(
                        id=part.id,
                        name=part.name,
                        args=dict(part.arguments),
                    ),
                    thought_signature=part.provider_signature,
                ))
            elif isinstance(part, ToolResultPart):
                parts.append(genai_types.Part(
                    function_response=genai_types.FunctionResponse(
                        id=part.call_id,
                        name=part.name,
                        response=_result_payload(part),
                    ),
                ))
        if not parts:
            continue
        # Function responses go back with the user role.
        role = "model" if turn.role == "assistant" else "user"
        contents.append(genai_types.Content(role=role, parts=parts))

    return contents


def turns_from_contents(contents: Sequence[genai_types.Content]) -> list[Turn]:
    """Inverse of `turns_to_contents`."""
    turns: list[Turn] = []

    for content in contents:
        parts: list = []
        has_results = False
        call_index = 0
        for part in content.parts or []:
            if part.function_call is not None:
                fc = part.function_call
                parts.append(ToolCallPart(
                    id=fc.id or f"call_{fc.name}_{call_index}",
                    name=fc.name or "",
                    arguments=dict(fc.args or {}),
                    provider_signature=part.thought_signature,
                ))
                call_index += 1
            elif part.function_response is not None:
                fr = part.function_response
                response = fr.response or {}
                has_results = True
                parts.append(ToolResultPart(
                    call_id=fr.id or "",
                    name=fr.name or "",
                    result=response.get("result"),
                    error_message=response.get("error"),
                ))
            elif part.text:
                parts.append(TextPart(text=part.text))

        if content.role == "model":
            role = "assistant"
        elif has_results:
            role = "tool"
        else:
            role = "user"
        turns.append(Turn(role=role, parts=tuple(parts)))

    return turns


def _to_function_declarations(tools: list[ToolDescriptor]) -> list[genai_types.Tool] | None:
    if not tools:
        return None
    declarations = [
        genai_types.FunctionDeclaration(
            name=t.name,
            description=t.description,
            parameters_json_schema=t.parameters,
        )
        for t in tools
    ]
    return [genai_types.Tool(function_declarations=declarations)]


def _first_candidate(chunk: Any) -> Any:
    candidates = get_field(chunk, "candidates") or []
    return candidates[0] if candidates else None


def _candidate_events(candidate: Any, call_ids: Iterator[int]) -> Iterator[CanonicalEvent]:
    content = get_field(candidate, "content")
    for part in get_field(content, "parts") or []:
        fc = get_field(part, "function_call")
        if fc is not None:
            yield ToolCallFragment(
                index=next(call_ids),
                id=get_field(fc, "id"),
                name=get_field(fc, "name"),
                arguments=json.dumps(dict(get_field(fc, "args") or {})),
                signature=get_field(part, "thought_signature"),
            )
            continue
        text = get_field(part, "text")
        if isinstance(text, str) and text:
            yield TextDelta(text=text, reasoning=bool(get_field(part, "thought")))


async def events_from_stream(stream: Any) -> AsyncIterator[CanonicalEvent]:
    """
    Map Gemini response chunks to canonical events.

    Anything that is not an async iterator is treated as an already
    aggregated response: its parts are mapped like one chunk, or, when it
    has no candidates at all, its text becomes a single TextDelta.
    """
    call_ids = itertools.count()

    if not hasattr(stream, "__aiter__"):
        candidate = _first_candidate(stream)
        if candidate is None:
            yield TextDelta(text=get_field(stream, "text") or "")
            yield TurnEnd(finish_reason="one_shot")
            return
        for event in _candidate_events(candidate, call_ids):
            yield event
        reason = get_field(candidate, "finish_reason")
        yield TurnEnd(finish_reason=str(reason) if reason is not None else "one_shot")
        return

    finish_reason = None

    async for chunk in stream:
        # Only the first candidate is used
        candidate = _first_candidate(chunk)
        if candidate is None:
            continue
        reason = get_field(candidate, "finish_reason")
        if reason is not None:
            finish_reason = str(reason)
        for event in _candidate_events(candidate, call_ids):
            yield event

    yield TurnEnd(finish_reason=finish_reason)


def _to_provider_error(e: genai_errors.APIError) -> ProviderError:
    code = getattr(e, "code", None)
    if code == 429:
        return ProviderError(f"Rate limited: {e}", retryable=True, status_code=429)
    return ProviderError(str(e), retryable=code in RETRYABLE_STATUS_CODES, status_code=code)


class GeminiAdapter(BaseModelAdapter):
    def __init__(
        self,
        model_name: str,
        api_key: str,
        streaming: bool = True,
        client: Any = None,
    ):
        self.model_name = model_name
        self._api_key = api_key
        self._streaming = streaming
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def build_request(
        self,
        turns: Sequence[Turn],
        tools: list[ToolDescriptor],
        system: str,
    ) -> dict:
        config_args: dict[str, Any] = {}
        gemini_tools = _to_function_declarations(tools)
        if gemini_tools:
            config_args["tools"] = gemini_tools
        if system:
            config_args["system_instruction"] = system
        return {
            "model": self.model_name,
            "contents": turns_to_contents(turns),
            "config": genai_types.GenerateContentConfig(**config_args),
        }

    async def stream_turn(
        self,
        turns: Sequence[Turn],
        tools: list[ToolDescriptor],
        system: str,
    ) -> AsyncIterator[CanonicalEvent]:
        request = self.build_request(turns, tools, system)
        models = self._get_client().aio.models
        logger.info("Requesting %s stream (%d contents)", self.model_name, len(request["contents"]))

        try:
            if self._streaming:
                stream = await models.generate_content_stream(**request)
            else:
                stream = await models.generate_content(**request)
            async for event in events_from_stream(stream):
                yield event
        except genai_errors.APIError as e:
            raise _to_provider_error(e) from e
        except TRANSPORT_ERRORS as e:
            raise transport_error(e) from e
