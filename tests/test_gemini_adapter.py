from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from tests.fakes import FakeGeminiModels, collect, gemini_client
from toolrelay.agent.events import TextDelta, ToolCallFragment, TurnEnd
from toolrelay.agent.history import TextPart, ToolCallPart, ToolResultPart, Turn
from toolrelay.models.base import ProviderError
from toolrelay.models.gemini import (
    GeminiAdapter,
    events_from_stream,
    turns_from_contents,
    turns_to_contents,
)
from toolrelay.tools.base import ToolDescriptor

SIGNATURE = b"\x8a\x00opaque\xff"

HISTORY = [
    Turn.user("What is on the pricing page?"),
    Turn(role="assistant", parts=(
        ToolCallPart(id="fc_1", name="get_page", arguments={"page": "pricing"}, provider_signature=SIGNATURE),
    )),
    Turn(role="tool", parts=(
        ToolResultPart(call_id="fc_1", name="get_page", result="Three plans"),
    )),
    Turn(role="assistant", parts=(TextPart(text="It lists three plans."),)),
]


def _part(**fields: Any) -> SimpleNamespace:
    return SimpleNamespace(**fields)


def _chunk(*parts: SimpleNamespace, finish_reason: Any = None) -> SimpleNamespace:
    candidate = SimpleNamespace(content=SimpleNamespace(parts=list(parts)), finish_reason=finish_reason)
    return SimpleNamespace(candidates=[candidate])


async def _stream(*chunks: SimpleNamespace):
    for chunk in chunks:
        await asyncio.sleep(0)
        yield chunk


def test_turns_to_contents_roles_and_parts() -> None:
    contents = turns_to_contents(HISTORY)

    assert [c.role for c in contents] == ["user", "model", "user", "model"]
    call_part = contents[1].parts[0]
    assert call_part.function_call.name == "get_page"
    assert call_part.function_call.args == {"page": "pricing"}
    assert call_part.thought_signature == SIGNATURE
    response = contents[2].parts[0].function_response
    assert (response.id, response.response) == ("fc_1", {"result": "Three plans"})


def test_error_results_are_sent_as_error_payload() -> None:
    turn = Turn(role="tool", parts=(ToolResultPart(call_id="c", name="t", error_message="timed out"),))

    (content,) = turns_to_contents([turn])

    assert content.parts[0].function_response.response == {"error": "timed out"}


def test_turns_from_contents_restores_history() -> None:
    assert turns_from_contents(turns_to_contents(HISTORY)) == HISTORY


def test_events_from_stream_maps_parts() -> None:
    stream = _stream(
        _chunk(_part(text="Considering pages", thought=True)),
        _chunk(_part(text="Let me look.", thought=None)),
        _chunk(
            _part(function_call=SimpleNamespace(id=None, name="get_page", args={"page": "pricing"}),
                  thought_signature=SIGNATURE),
            _part(function_call=SimpleNamespace(id="fc_2", name="list_pages", args=None)),
            finish_reason="STOP",
        ),
    )

    events = asyncio.run(collect(events_from_stream(stream)))

    assert events == [
        TextDelta(text="Considering pages", reasoning=True),
        TextDelta(text="Let me look."),
        ToolCallFragment(index=0, name="get_page", arguments=json.dumps({"page": "pricing"}), signature=SIGNATURE),
        ToolCallFragment(index=1, id="fc_2", name="list_pages", arguments="{}"),
        TurnEnd(finish_reason="STOP"),
    ]


def test_non_iterable_response_is_one_shot() -> None:
    events = asyncio.run(collect(events_from_stream(SimpleNamespace(text="Whole answer"))))

    assert events == [TextDelta(text="Whole answer"), TurnEnd(finish_reason="one_shot")]


def test_stream_turn_builds_request() -> None:
    models = FakeGeminiModels(response=_stream(_chunk(_part(text="ok"))))
    adapter = GeminiAdapter("gemini-2.5-flash", api_key="k", client=gemini_client(models))
    tools = [ToolDescriptor(name="get_page", description="Read a page",
                            parameters={"type": "object", "properties": {"page": {"type": "string"}}})]

    events = asyncio.run(collect(adapter.stream_turn([Turn.user("hi")], tools, "Be brief.")))

    assert events[0] == TextDelta(text="ok")
    request = models.requests[0]
    assert request["model"] == "gemini-2.5-flash"
    config = request["config"]
    assert config.system_instruction == "Be brief."
    declaration = config.tools[0].function_declarations[0]
    assert declaration.name == "get_page"
    assert declaration.parameters_json_schema["properties"]["page"] == {"type": "string"}


def test_non_streaming_mode_uses_generate_content() -> None:
    models = FakeGeminiModels(response=SimpleNamespace(text="full"))
    adapter = GeminiAdapter("gemini-2.5-flash", api_key="k", streaming=False, client=gemini_client(models))

    events = asyncio.run(collect(adapter.stream_turn([Turn.user("hi")], [], "")))

    assert events == [TextDelta(text="full"), TurnEnd(finish_reason="one_shot")]


@pytest.mark.parametrize(
    "error, retryable",
    [
        (genai_errors.ClientError(429, {"error": {"code": 429, "message": "quota", "status": "RESOURCE_EXHAUSTED"}}), True),
        (genai_errors.ServerError(503, {"error": {"code": 503, "message": "overloaded", "status": "UNAVAILABLE"}}), True),
        (genai_errors.ClientError(400, {"error": {"code": 400, "message": "bad", "status": "INVALID_ARGUMENT"}}), False),
    ],
)
def test_api_errors_become_provider_errors(error: Exception, retryable: bool) -> None:
    adapter = GeminiAdapter("gemini-2.5-flash", api_key="k", client=gemini_client(FakeGeminiModels(error=error)))

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(collect(adapter.stream_turn([Turn.user("hi")], [], "")))

    assert exc_info.value.retryable is retryable


@pytest.mark.parametrize(
    "error",
    [httpx.ConnectError("connection refused"), httpx.ReadTimeout("read timed out"), TimeoutError()],
)
def test_transport_errors_become_retryable_provider_errors(error: Exception) -> None:
    adapter = GeminiAdapter("gemini-2.5-flash", api_key="k", client=gemini_client(FakeGeminiModels(error=error)))

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(collect(adapter.stream_turn([Turn.user("hi")], [], "")))

    assert exc_info.value.retryable
    assert exc_info.value.__cause__ is error


def test_transport_error_mid_stream_is_wrapped() -> None:
    async def broken_stream():
        yield _chunk(_part(text="Partial"))
        raise httpx.ReadError("connection reset")

    adapter = GeminiAdapter("gemini-2.5-flash", api_key="k",
                            client=gemini_client(FakeGeminiModels(response=broken_stream())))
    seen: list = []

    async def drain() -> None:
        async for event in adapter.stream_turn([Turn.user("hi")], [], ""):
            seen.append(event)

    with pytest.raises(ProviderError, match="connection reset"):
        asyncio.run(drain())
    assert seen == [TextDelta(text="Partial")]


def test_one_shot_response_keeps_function_calls() -> None:
    response = SimpleNamespace(text=None, candidates=[SimpleNamespace(
        finish_reason=None,
        content=SimpleNamespace(parts=[
            _part(text="Checking.", thought=None),
            _part(function_call=SimpleNamespace(id=None, name="search", args={"q": "a"}),
                  thought_signature=SIGNATURE),
        ]),
    )])
    models = FakeGeminiModels(response=response)
    adapter = GeminiAdapter("gemini-2.5-flash", api_key="k", streaming=False, client=gemini_client(models))
    tools = [ToolDescriptor(name="search")]

    events = asyncio.run(collect(adapter.stream_turn([Turn.user("hi")], tools, "")))

    assert events == [
        TextDelta(text="Checking."),
        ToolCallFragment(index=0, name="search", arguments='{"q": "a"}', signature=SIGNATURE),
        TurnEnd(finish_reason="one_shot"),
    ]


def test_missing_call_ids_count_only_calls() -> None:
    content = genai_types.Content(role="model", parts=[
        genai_types.Part(text="Let me look."),
        genai_types.Part(function_call=genai_types.FunctionCall(name="get_page", args={"page": "a"})),
        genai_types.Part(function_call=genai_types.FunctionCall(name="get_page", args={"page": "b"})),
    ])

    (turn,) = turns_from_contents([content])

    assert [c.id for c in turn.tool_calls] == ["call_get_page_0", "call_get_page_1"]
